from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Callable, Iterable, Optional

import xarray as xr

from cropniche.exceptions import MissingArtifactError
from cropniche.utils import ensure_dir, get_logger

ENGINE = "netcdf4"

# integer percentages with -1 off land
RECON_ENCODING = {"dtype": "int16", "_FillValue": -1, "zlib": True, "complevel": 4}
MODEL_ENCODING = {"zlib": True, "complevel": 4}


class ArtifactStore:
    """
    Key-addressed netCDF artifacts: <root>/<kind>/<key>.nc

    An artifact that exists is complete; writes go to a temp file in the same
    directory and are moved into place, so a failed unit never leaves a
    partial file behind. With `overwrite=True` every artifact touched in the
    run is recomputed.
    """

    def __init__(self, root: Path, overwrite: bool = False):
        self.root = Path(root)
        self.overwrite = overwrite

    def path_for(self, kind: str, key: str) -> Path:
        return self.root / kind / f"{key}.nc"

    def exists(self, kind: str, key: str) -> bool:
        return self.path_for(kind, key).exists()

    def keys(self, kind: str) -> list[str]:
        d = self.root / kind
        if not d.exists():
            return []
        return sorted(p.stem for p in d.glob("*.nc"))

    def missing(self, kind: str, keys: Iterable[str]) -> list[str]:
        return [k for k in keys if not self.exists(kind, k)]

    def require(self, kind: str, keys: Iterable[str]) -> None:
        missing = self.missing(kind, keys)
        if missing:
            raise MissingArtifactError(kind, missing)

    def load(self, kind: str, key: str) -> xr.Dataset:
        path = self.path_for(kind, key)
        if not path.exists():
            raise MissingArtifactError(kind, [key])
        # grid_mapping variables come back as coords, not data
        with xr.open_dataset(path, engine=ENGINE, decode_coords="all") as ds:
            return ds.load()

    def load_array(self, kind: str, key: str) -> xr.DataArray:
        """The single data variable of an artifact, with the file attrs."""
        ds = self.load(kind, key)
        names = list(ds.data_vars)
        if len(names) != 1:
            raise ValueError(f"{kind}/{key} holds {len(names)} variables, expected one")
        da = ds[names[0]]
        da.attrs.update(ds.attrs)
        return da

    def _write_atomic(self, path: Path, write: Callable[[Path], None]) -> None:
        ensure_dir(path.parent)
        tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        try:
            write(tmp)
            os.replace(tmp, path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def save(
        self,
        kind: str,
        key: str,
        obj: xr.Dataset | xr.DataArray,
        encoding: Optional[dict] = None,
    ) -> Path:
        """
        Write `obj` under (kind, key). `encoding` applies to every data variable;
        grid-mapping links written by rioxarray are kept.
        """
        ds = obj.to_dataset(promote_attrs=True) if isinstance(obj, xr.DataArray) else obj

        enc = None
        if encoding is not None:
            enc = {}
            for name in ds.data_vars:
                e = dict(encoding)
                gm = ds[name].encoding.get("grid_mapping")
                if gm is not None:
                    e["grid_mapping"] = gm
                enc[name] = e

        path = self.path_for(kind, key)
        self._write_atomic(path, lambda tmp: ds.to_netcdf(tmp, engine=ENGINE, encoding=enc))
        return path

    def ensure(
        self,
        kind: str,
        key: str,
        compute: Callable[[], xr.Dataset | xr.DataArray],
        encoding: Optional[dict] = None,
    ) -> bool:
        """
        Compute and save (kind, key) unless it already exists.
        Returns True when the artifact was (re)computed.
        """
        logger = get_logger()
        path = self.path_for(kind, key)
        if path.exists() and not self.overwrite:
            logger.info("[SKIP] %s exists: %s", kind, path)
            return False

        self.save(kind, key, compute(), encoding=encoding)
        logger.info("[OK] %s saved: %s", kind, path)
        return True

    def compute_or_fetch(
        self,
        kind: str,
        key: str,
        compute: Callable[[], xr.Dataset | xr.DataArray],
        encoding: Optional[dict] = None,
    ) -> xr.Dataset:
        self.ensure(kind, key, compute, encoding=encoding)
        return self.load(kind, key)

    def copy(self, src_kind: str, src_key: str, dst_kind: str, dst_key: str) -> bool:
        """Byte-for-byte copy of one artifact to another key; skip rules as in `ensure`."""
        logger = get_logger()
        src = self.path_for(src_kind, src_key)
        if not src.exists():
            raise MissingArtifactError(src_kind, [src_key])

        dst = self.path_for(dst_kind, dst_key)
        if dst.exists() and not self.overwrite:
            logger.info("[SKIP] %s exists: %s", dst_kind, dst)
            return False

        self._write_atomic(dst, lambda tmp: shutil.copyfile(src, tmp))
        logger.info("[OK] %s copied: %s -> %s", dst_kind, src, dst)
        return True

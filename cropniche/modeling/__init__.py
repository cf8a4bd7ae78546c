from .aggregate import aggregate_reconstructions, check_aligned
from .config import KrigingConfig, NicheConfig, SmoothingConfig, offset_axis
from .kriging import IndicatorKriging
from .niche import fit_cultivar_model, station_indicators
from .projection import RECON_VAR, project_response
from .smoothing import SmoothedResponse, smooth_response

# Data paths
DATA_PATH = "input_data/spr_data.csv"
RESULTS_DIR = "results"

# Input schema (raw column name -> analysis name)
REQUIRED_COLUMNS = [
    "subject",
    "item",
    "region",
    "verb_strength",
    "VAC.type",
    "EIT_score",
    "RT_raw",
]
COLUMN_RENAMES = {"VAC.type": "VAC_type"}

# Design
N_REGIONS = 7
VAC_TYPES = ["VaN", "VenN", "VdeN", "VconN"]
STRENGTH_CODES = {"weak": -0.5, "strong": 0.5}
STRICT_CONTRAST_BALANCE = False
CONTRAST_BALANCE_TOL = 0.05  # max |mean code| before warning

# Response variables
CRITICAL_REGION = 3  # preposition
CONSTRUCTION_REGIONS = [2, 3, 4, 5]
DESCRIPTIVE_REGION = 1  # region used for raw-RT descriptives

# Model fitting
FIT_METHODS = ["lbfgs", "powell"]  # tried in order until converged
SINGULAR_TOL = 1e-6  # variance components below this are on the boundary
CI_MODEL_ID = 5
CI_LEVEL = 0.95
N_JOBS = 3  # one task per response variable


# Helper function for accessing config values
def get(key, default=None):
    """Get configuration value with default fallback"""
    return globals().get(key, default)

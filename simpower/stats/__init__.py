"""Random variates, data generation, and model fitting modules."""

from . import data_generation as data_generation
from . import models as models
from . import random_variates as random_variates

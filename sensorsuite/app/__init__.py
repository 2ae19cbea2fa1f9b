from .main import main, run
from .suite import ProviderSet, SensorSuiteApp, build_providers

__all__ = [
    'ProviderSet',
    'SensorSuiteApp',
    'build_providers',
    'main',
    'run',
]

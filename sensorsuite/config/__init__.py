from .settings import (
    AUDIO_BACKENDS,
    CAMERA_BACKENDS,
    SuiteSettings,
    build_arg_parser,
    parse_cli_args,
    read_config_file,
)

__all__ = [
    'AUDIO_BACKENDS',
    'CAMERA_BACKENDS',
    'SuiteSettings',
    'build_arg_parser',
    'parse_cli_args',
    'read_config_file',
]

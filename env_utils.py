import os


def _clean(value):
    value = value.strip()
    if value.endswith(';'):
        value = value[:-1].rstrip()
    return value


def parse_bool_env(name, default='0'):
    """Return True when the environment variable equals '1', ignoring trailing semicolons."""
    value = os.environ.get(name, default)
    if value is None:
        value = default
    return _clean(value) == '1'


def parse_bool_override(name):
    """Return the '1'/'0' flag in name as a bool, or None when it is unset or empty."""
    value = os.environ.get(name)
    if value is None or not _clean(value):
        return None
    return _clean(value) == '1'

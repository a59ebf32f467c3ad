from .settings_dict import QuerySettingsDict
from .inspect import pluck_kwargs_from

import inspect
from functools import lru_cache
from typing import Callable, Mapping, Tuple


@lru_cache(100)
def get_function_defaults(for_func: Callable) -> dict:
    """ Get a dict of function's keyword arguments that have default values """
    parameters = inspect.signature(for_func).parameters

    # Only process those that have defaults
    return {name: p.default
            for name, p in parameters.items()
            if p.default is not inspect.Parameter.empty}


def pluck_kwargs_from(dct: Mapping, for_func: Callable, skip: Tuple[str] = ()) -> dict:
    """ Analyze a function, pluck the arguments it needs from a dict """
    defaults = get_function_defaults(for_func)

    # Get the values for these kwargs
    return {k: dct.get(k, defaults[k])
            for k in defaults.keys()
            if k not in skip}


def unknown_kwargs(dct: Mapping, for_func: Callable) -> Tuple[str]:
    """ Get the keys of a dict that the function does not accept """
    defaults = get_function_defaults(for_func)
    return tuple(sorted(k for k in dct if k not in defaults))

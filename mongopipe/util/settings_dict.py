from typing import Callable, Optional

from .inspect import pluck_kwargs_from, unknown_kwargs
from ..naming import columnize


class QuerySettingsDict(dict):
    """ Query settings container.

        Is mostly used for nice autocompletion and documentation purposes.

        Every setting is a keyword argument of __init__(), with its default value.
        Settings are given to a Query explicitly: there are no process-wide flags.

        Unknown settings are an error: a typo in a security setting should not go unnoticed.
    """

    def __init__(self,
                 # --- naming
                 field_formatter: Optional[Callable[[str], str]] = columnize,
                 # --- query
                 cache: bool = True,
                 use_master_key: bool = True,
                 max_limit: Optional[int] = None,
                 # --- sandbox
                 validate_pipelines: bool = True,
                 max_pipeline_stages: int = 20,
                 max_pipeline_depth: int = 10,
                 max_query_depth: int = 8,
                 # --- operators
                 regex_max_length: int = 500,
                 ):
        """ Settings that control how a Query is compiled.

        Example:
            ```python
            from mongopipe import Query, QuerySettingsDict

            settings = QuerySettingsDict(max_limit=100, cache=False)
            q = Query('Post', settings=settings).where(published=True)
            ```

        Args:
            field_formatter (callable | None):
                The function that converts field names to column names.
                Default: `columnize()`, which gives lowerCamelCase: `created_at` -> `createdAt`.
                Use `None` to leave field names as they are.
            cache (bool):
                Whether results may be served from the cache.
                A Query can override it with `Query.cache()`, and a single call can override both.
            use_master_key (bool):
                Whether the query is sent with the master key, which bypasses ACLs and class-level permissions.
            max_limit (int | None):
                The maximum value of `limit`. Larger values are clamped down to it.
                `None`: no restriction.
            validate_pipelines (bool):
                Run compiled pipelines through the sandbox `PipelineValidator` in `Query.compile_pipeline()`.
            max_pipeline_stages (int):
                The maximum number of stages in a validated pipeline.
            max_pipeline_depth (int):
                The maximum nesting depth of any single stage in a validated pipeline.
            max_query_depth (int):
                The maximum nesting depth of a constraint document given to the `ConstraintTranslator`.
            regex_max_length (int):
                The maximum length of a pattern given to the `regex`, `starts_with`, `contains` operators.
        """
        super(QuerySettingsDict, self).__init__()
        self.update({k: v
                     for k, v in locals().items()
                     if k not in {'__class__', 'self'}})

    def __setitem__(self, key, value):
        if key not in self:
            raise KeyError('Unknown setting: {!r}'.format(key))
        super(QuerySettingsDict, self).__setitem__(key, value)

    def and_more(self, **settings):
        """ Copy the object and add more settings to it

            :raises KeyError: unknown setting
        """
        self._check_known(settings)
        return self.__class__(**{**self, **settings})

    @classmethod
    def pluck_from(cls, dict, skip=()):
        """ Initialize the class by plucking kwargs from a dictionary.

            This is useful when you have a dict with configuration for multiple things,
            and you want to initialize this one by getting only the keys you need.

            Args:
                skip: List of key names to skip when copying.
        """
        kwargs = pluck_kwargs_from(dict,
                                   for_func=cls.__init__,
                                   skip=skip
                                   )
        return cls(**kwargs)

    @classmethod
    def coerce(cls, settings) -> 'QuerySettingsDict':
        """ Get a settings object from: None (defaults), a plain dict, or a settings object

            :raises KeyError: unknown setting in a plain dict
        """
        if settings is None:
            return cls()
        if isinstance(settings, cls):
            return settings
        cls._check_known(settings)
        return cls(**settings)

    @classmethod
    def _check_known(cls, settings):
        unknown = unknown_kwargs(settings, cls.__init__)
        if unknown:
            raise KeyError('Unknown settings: {}'.format(', '.join(unknown)))

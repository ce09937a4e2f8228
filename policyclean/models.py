# models.py
from typing import Any, Generic, Literal, TypeVar
from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    StrictBool,
    StrictStr,
    TypeAdapter,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel
import nh3


T = TypeVar('T', bound=BaseModel)

TagSet = frozenset[StrictStr]
TagMap = dict[StrictStr, frozenset[StrictStr]]

# ammonia's generic attribute and link rel defaults are not exported by nh3
DEFAULT_GENERIC_ATTRIBUTES = frozenset({'lang', 'title'})
DEFAULT_LINK_REL = 'noopener noreferrer'

_absolute_url = TypeAdapter(AnyUrl)


def _check_absolute_url(name: str, value: str) -> None:
    # the stored string stays as given, AnyUrl would normalize it
    try:
        _absolute_url.validate_python(value)
    except ValidationError:
        raise ValueError(f"'{name}' must be an absolute URL, got {value!r}") from None


def default_tag_attributes() -> dict[str, set[str]]:
    """Fresh copy of the engine's per-tag attribute allow-list."""
    return {tag: set(attrs) for tag, attrs in nh3.ALLOWED_ATTRIBUTES.items()}


class ValidationErrorDetail(BaseModel):
    field: str
    message: str
    input_value: Any


class ValidationResult(BaseModel, Generic[T]):
    is_valid: bool
    model: T | None = None
    errors: list[ValidationErrorDetail] = []


class UrlRelative(BaseModel):
    """How the engine treats relative URLs in ``href``/``src``.

    A bare string is accepted as shorthand for ``{"mode": <string>}``.
    """

    mode: Literal['pass_through', 'deny', 'rewrite_with_base', 'rewrite_with_root']
    base: StrictStr | None = None
    root: StrictStr | None = None
    path: StrictStr | None = None

    model_config = ConfigDict(frozen=True, extra='forbid')

    @model_validator(mode='before')
    @classmethod
    def _expand_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {'mode': data}
        return data

    @model_validator(mode='after')
    def _check_mode_arguments(self) -> 'UrlRelative':
        if self.mode == 'rewrite_with_base':
            if self.base is None:
                raise ValueError("mode 'rewrite_with_base' requires 'base'")
            _check_absolute_url('base', self.base)
        elif self.mode == 'rewrite_with_root':
            if self.root is None or self.path is None:
                raise ValueError("mode 'rewrite_with_root' requires 'root' and 'path'")
            _check_absolute_url('root', self.root)
        elif self.base is not None or self.root is not None or self.path is not None:
            raise ValueError(f"mode '{self.mode}' takes no arguments")
        return self

    def to_engine(self) -> str | tuple:
        if self.mode == 'rewrite_with_base':
            return ('rewrite_with_base', self.base)
        if self.mode == 'rewrite_with_root':
            return ('rewrite_with_root', self.root, self.path)
        return self.mode


class ConfigModel(BaseModel):
    """Allow-list sanitization policy.

    Every collection field is ``None`` when the caller did not configure it,
    which leaves the engine default in place. An empty collection is a real
    setting meaning "nothing allowed". ``link_rel`` also distinguishes an
    explicit ``None`` (no ``rel`` injection) from an unset field, see
    :attr:`link_rel_configured`.

    The model is frozen and its sets are ``frozenset``, but the mapping
    fields are plain ``dict`` objects; treat them as read-only.
    """

    tags: TagSet | None = None
    clean_content_tags: TagSet | None = None
    tag_attributes: TagMap | None = None
    tag_attribute_values: dict[StrictStr, TagMap] | None = None
    set_tag_attribute_values: dict[StrictStr, dict[StrictStr, StrictStr]] | None = None
    generic_attributes: TagSet | None = None
    url_schemes: TagSet | None = None
    link_rel: StrictStr | None = None
    allowed_classes: TagMap | None = None
    strip_comments: StrictBool = True
    id_prefix: StrictStr | None = None
    generic_attribute_prefixes: TagSet | None = None
    url_relative: UrlRelative | None = None

    model_config = ConfigDict(
        frozen=True,
        extra='forbid',
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @classmethod
    def engine_defaults(cls) -> 'ConfigModel':
        """Policy with every engine default written out explicitly."""
        return cls(
            tags=nh3.ALLOWED_TAGS,
            clean_content_tags=nh3.CLEAN_CONTENT_TAGS,
            tag_attributes=default_tag_attributes(),
            tag_attribute_values={},
            set_tag_attribute_values={},
            generic_attributes=DEFAULT_GENERIC_ATTRIBUTES,
            url_schemes=nh3.ALLOWED_URL_SCHEMES,
            link_rel=DEFAULT_LINK_REL,
            allowed_classes={},
            strip_comments=True,
        )

    @property
    def link_rel_configured(self) -> bool:
        return 'link_rel' in self.model_fields_set

    @property
    def effective_tags(self) -> frozenset[str]:
        return self.tags if self.tags is not None else frozenset(nh3.ALLOWED_TAGS)

    @property
    def effective_clean_content_tags(self) -> frozenset[str]:
        if self.clean_content_tags is not None:
            return self.clean_content_tags
        return frozenset(nh3.CLEAN_CONTENT_TAGS)

    @property
    def effective_tag_attributes(self) -> dict[str, frozenset[str]]:
        if self.tag_attributes is not None:
            return self.tag_attributes
        return {tag: frozenset(attrs) for tag, attrs in default_tag_attributes().items()}

    @property
    def effective_generic_attributes(self) -> frozenset[str]:
        if self.generic_attributes is not None:
            return self.generic_attributes
        return DEFAULT_GENERIC_ATTRIBUTES

    @property
    def effective_link_rel(self) -> str | None:
        return self.link_rel if self.link_rel_configured else DEFAULT_LINK_REL

    @model_validator(mode='after')
    def _check_engine_constraints(self) -> 'ConfigModel':
        # nh3 refuses these combinations when the cleaner is built, except the
        # value list check below
        tag_attributes = self.effective_tag_attributes
        generic = self.effective_generic_attributes

        if self.tag_attributes is not None and '*' in self.tag_attributes:
            raise ValueError("tagAttributes: '*' is not a tag name, use genericAttributes")

        for tag in sorted(self.effective_clean_content_tags):
            if tag in self.effective_tags:
                raise ValueError(f"cleanContentTags: '{tag}' is also listed in tags")
            if tag in tag_attributes:
                raise ValueError(f"cleanContentTags: '{tag}' is also a key of tagAttributes")

        if self.effective_link_rel is not None:
            if 'rel' in generic:
                raise ValueError("genericAttributes: 'rel' requires linkRel to be null")
            for tag in sorted(tag_attributes):
                if 'rel' in tag_attributes[tag]:
                    raise ValueError(f"tagAttributes.{tag}: 'rel' requires linkRel to be null")

        classed_tags = sorted(tag for tag, classes in (self.allowed_classes or {}).items() if classes)
        if classed_tags:
            if 'class' in generic:
                raise ValueError("genericAttributes: 'class' conflicts with allowedClasses")
            for tag in classed_tags:
                if 'class' in tag_attributes.get(tag, ()):
                    raise ValueError(f"tagAttributes.{tag}: 'class' conflicts with allowedClasses")

        # Not an engine constraint: a value list for an attribute that is
        # already allowed with any value would have no effect, so it is refused.
        forced = self.set_tag_attribute_values or {}
        for tag, values in sorted((self.tag_attribute_values or {}).items()):
            for attr in sorted(values):
                if attr in forced.get(tag, {}):
                    continue  # the forced value replaces the value list
                if attr in generic or attr in tag_attributes.get(tag, ()):
                    raise ValueError(
                        f"tagAttributeValues.{tag}.{attr}: attribute is already allowed "
                        "with any value, so this value list would have no effect"
                    )
        return self

    def to_external(self) -> dict[str, Any]:
        """Configured fields in their camelCase external form."""
        data = self.model_dump(by_alias=True, exclude_unset=True)
        return _sorted_collections(data)


def _sorted_collections(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, dict):
        return {k: _sorted_collections(v) for k, v in value.items()}
    return value

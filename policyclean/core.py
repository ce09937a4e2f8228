# core.py
from typing import Any, Mapping, Type, get_args
from pydantic import ValidationError
from multidict import MultiMapping
import nh3
from policyclean.models import (
    ConfigModel,
    ValidationErrorDetail,
    ValidationResult,
    default_tag_attributes,
)
import html
import logging

logger = logging.getLogger(__name__)

# built once, the engine's own defaults
_DEFAULT_CLEANER = nh3.Cleaner()
_TEXT_CLEANER = nh3.Cleaner(tags=set())


class ConfigurationError(ValueError):
    """Raised when a sanitizer configuration does not match the schema."""

    def __init__(self, message: str, errors: list[ValidationErrorDetail] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])

    @classmethod
    def from_details(cls, errors: list[ValidationErrorDetail]) -> 'ConfigurationError':
        summary = '; '.join(f"{e.field}: {e.message}" for e in errors)
        return cls(f"Invalid sanitizer configuration: {summary}", errors)


class ConfigValidator:
    def __init__(self, model: Type[ConfigModel] = ConfigModel):
        self.model = model
        self.field_names = self._identify_field_names()
        self.set_fields = self._identify_fields(frozenset)
        self.bool_fields = self._identify_fields(bool)

    def _identify_field_names(self) -> dict[str, str]:
        names = {}
        for field_name, field in self.model.model_fields.items():
            names[field_name] = field_name
            if field.alias:
                names[field.alias] = field_name
        return names

    def _identify_fields(self, kind: type) -> set:
        fields = set()
        for field_name, field in self.model.model_fields.items():
            for candidate in get_args(field.annotation) or (field.annotation,):
                if candidate is kind or getattr(candidate, '__origin__', None) is kind:
                    fields.add(field_name)
        return fields

    def _parse_bool(self, value: Any) -> Any:
        # Form posts only carry strings
        bool_map = {
            "true": True, "1": True, "yes": True,
            "false": False, "0": False, "no": False
        }
        if isinstance(value, str) and value.lower() in bool_map:
            return bool_map[value.lower()]
        return value  # left for the model to reject

    def _from_multi(self, data: MultiMapping) -> dict[str, Any]:
        normalized = {}
        for key in dict.fromkeys(data.keys()):
            values = data.getall(key)
            field = self.field_names.get(key)
            if field in self.set_fields:
                normalized[key] = values
            elif len(values) > 1:
                normalized[key] = values  # repeated scalar, rejected by the model
            elif field in self.bool_fields:
                normalized[key] = self._parse_bool(values[0])
            else:
                normalized[key] = values[0]
        return normalized

    def _normalize(self, raw: Any) -> dict[str, Any]:
        if raw is None:
            return {}
        if isinstance(raw, ConfigModel):
            return raw.model_dump(exclude_unset=True)
        if isinstance(raw, MultiMapping):
            return self._from_multi(raw)
        return dict(raw)

    def _error_details(self, error: ValidationError) -> list[ValidationErrorDetail]:
        details = []
        for item in error.errors():
            loc = item.get('loc')
            field_name = ".".join(str(part) for part in loc) if loc else "general"
            details.append(ValidationErrorDetail(
                field=field_name,
                message=item.get('msg', ''),
                input_value=item.get('input'),
            ))
        return details

    def validate(self, raw: Any) -> ValidationResult[ConfigModel]:
        """Validate ``raw`` without raising.

        ``raw`` may be ``None``, any mapping (including a ``MultiDict`` from a
        form post) or an existing :class:`ConfigModel`, which is re-checked.
        """
        result = ValidationResult[ConfigModel](is_valid=False)
        if raw is not None and not isinstance(raw, (Mapping, ConfigModel)):
            result.errors.append(ValidationErrorDetail(
                field="general",
                message=f"Configuration must be a mapping, got {type(raw).__name__}",
                input_value=raw,
            ))
            return result
        try:
            result.model = self.model.model_validate(self._normalize(raw))
            result.is_valid = True
        except ValidationError as e:
            result.errors.extend(self._error_details(e))
        return result

    def validate_json(self, data: str | bytes) -> ValidationResult[ConfigModel]:
        result = ValidationResult[ConfigModel](is_valid=False)
        try:
            result.model = self.model.model_validate_json(data)
            result.is_valid = True
        except ValidationError as e:
            result.errors.extend(self._error_details(e))
        return result

    def parse(self, raw: Any) -> ConfigModel:
        return self._unwrap(self.validate(raw))

    def parse_json(self, data: str | bytes) -> ConfigModel:
        return self._unwrap(self.validate_json(data))

    def _unwrap(self, result: ValidationResult[ConfigModel]) -> ConfigModel:
        if not result.is_valid:
            error = ConfigurationError.from_details(result.errors)
            logger.warning("Rejected sanitizer configuration: %s", error)
            raise error
        return result.model


class PolicyBuilder:
    """Translates a :class:`ConfigModel` into ``nh3.Cleaner`` keyword arguments.

    Only configured fields produce a keyword, so everything left unset keeps
    the engine default. Forced attribute values win over value allow-lists:
    a tag/attribute pair listed in ``set_tag_attribute_values`` is removed
    from ``tag_attribute_values`` before it reaches the engine.
    """

    def __init__(self, config: ConfigModel):
        self.config = config

    def engine_options(self) -> dict[str, Any]:
        config = self.config
        options: dict[str, Any] = {'strip_comments': config.strip_comments}
        if config.tags is not None:
            options['tags'] = set(config.tags)
        if config.clean_content_tags is not None:
            options['clean_content_tags'] = set(config.clean_content_tags)
        attributes = self._attributes()
        if attributes is not None:
            options['attributes'] = attributes
        tag_attribute_values = self._tag_attribute_values()
        if tag_attribute_values is not None:
            options['tag_attribute_values'] = tag_attribute_values
        if config.set_tag_attribute_values is not None:
            options['set_tag_attribute_values'] = {
                tag: dict(values) for tag, values in config.set_tag_attribute_values.items()
            }
        if config.url_schemes is not None:
            options['url_schemes'] = set(config.url_schemes)
        if config.link_rel_configured:
            options['link_rel'] = config.link_rel
        if config.allowed_classes is not None:
            options['allowed_classes'] = _copy_set_map(config.allowed_classes)
        if config.id_prefix is not None:
            options['id_prefix'] = config.id_prefix
        if config.generic_attribute_prefixes is not None:
            options['generic_attribute_prefixes'] = set(config.generic_attribute_prefixes)
        if config.url_relative is not None:
            options['url_relative'] = config.url_relative.to_engine()
        return options

    def _attributes(self) -> dict[str, set[str]] | None:
        # nh3 takes per-tag and generic attributes in one map, '*' being generic
        tag_attributes = self.config.tag_attributes
        generic = self.config.generic_attributes
        if tag_attributes is None and generic is None:
            return None
        if tag_attributes is None:
            attributes = default_tag_attributes()
        else:
            attributes = _copy_set_map(tag_attributes)
        if generic is not None:
            attributes['*'] = set(generic)
        return attributes

    def _tag_attribute_values(self) -> dict[str, dict[str, set[str]]] | None:
        values = self.config.tag_attribute_values
        if values is None:
            return None
        forced = self.config.set_tag_attribute_values or {}
        resolved = {}
        for tag, attrs in values.items():
            kept = {
                attr: set(allowed)
                for attr, allowed in attrs.items()
                if attr not in forced.get(tag, {})
            }
            if kept:
                resolved[tag] = kept
        return resolved

    def build(self) -> nh3.Cleaner:
        options = self.engine_options()
        logger.debug("Building sanitizer policy with %s", ", ".join(sorted(options)))
        return nh3.Cleaner(**options)


def _copy_set_map(mapping: Mapping[str, frozenset[str]]) -> dict[str, set[str]]:
    return {key: set(values) for key, values in mapping.items()}


class Policy:
    """A validated allow-list policy bound to its own engine cleaner.

    Policies never change after construction and can be shared freely,
    including between threads.
    """

    def __init__(self, config: Any = None):
        self._config = ConfigValidator().parse(config)
        self._cleaner = PolicyBuilder(self._config).build()

    @classmethod
    def from_json(cls, data: str | bytes) -> 'Policy':
        return cls(ConfigValidator().parse_json(data))

    @property
    def config(self) -> ConfigModel:
        # a copy, so the mapping fields of the policy's own model stay untouched
        return self._config.model_copy(deep=True)

    def clean(self, text: str) -> str:
        return self._cleaner.clean(text)

    def __repr__(self) -> str:
        return f"Policy({self._config.to_external()!r})"


def clean(text: str) -> str:
    """Sanitize ``text`` with the engine's default allow-list."""
    return _DEFAULT_CLEANER.clean(text)


def clean_text(text: str) -> str:
    """Strip every tag and return the decoded text content.

    The result is plain text, not HTML: pass it through :func:`escape`
    before inserting it into a document.
    """
    return html.unescape(_TEXT_CLEANER.clean(text))


def escape(text: str) -> str:
    """Encode every character that has meaning to an HTML parser."""
    return nh3.clean_text(text)

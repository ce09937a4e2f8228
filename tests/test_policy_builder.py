import nh3
import pytest
from policyclean.core import ConfigValidator, PolicyBuilder
from policyclean.models import ConfigModel


def options_for(config):
    return PolicyBuilder(ConfigValidator().parse(config)).engine_options()


def test_empty_configuration_only_sets_strip_comments():
    assert options_for({}) == {"strip_comments": True}


def test_every_field_is_translated():
    options = options_for({
        "tags": ["a", "b", "div", "span"],
        "cleanContentTags": ["script"],
        "tagAttributes": {"a": ["href"]},
        "tagAttributeValues": {"div": {"role": ["alert", "status"]}},
        "setTagAttributeValues": {"a": {"target": "_blank"}},
        "genericAttributes": ["title"],
        "urlSchemes": ["https", "mailto"],
        "linkRel": "nofollow",
        "allowedClasses": {"span": ["highlight"]},
        "stripComments": False,
        "idPrefix": "user-",
        "genericAttributePrefixes": ["data-"],
        "urlRelative": "deny",
    })
    assert options == {
        "tags": {"a", "b", "div", "span"},
        "clean_content_tags": {"script"},
        "attributes": {"a": {"href"}, "*": {"title"}},
        "tag_attribute_values": {"div": {"role": {"alert", "status"}}},
        "set_tag_attribute_values": {"a": {"target": "_blank"}},
        "url_schemes": {"https", "mailto"},
        "link_rel": "nofollow",
        "allowed_classes": {"span": {"highlight"}},
        "strip_comments": False,
        "id_prefix": "user-",
        "generic_attribute_prefixes": {"data-"},
        "url_relative": "deny",
    }


@pytest.mark.parametrize("key, option", [
    ("tags", "tags"),
    ("cleanContentTags", "clean_content_tags"),
    ("urlSchemes", "url_schemes"),
    ("genericAttributePrefixes", "generic_attribute_prefixes"),
])
def test_present_empty_set_overrides_default(key, option):
    assert option not in options_for({})
    assert options_for({key: []})[option] == set()


@pytest.mark.parametrize("key, option", [
    ("tagAttributeValues", "tag_attribute_values"),
    ("setTagAttributeValues", "set_tag_attribute_values"),
    ("allowedClasses", "allowed_classes"),
])
def test_present_empty_map_is_emitted(key, option):
    assert option not in options_for({})
    assert options_for({key: {}})[option] == {}


def test_empty_tag_attributes_keep_generic_default():
    assert options_for({"tagAttributes": {}})["attributes"] == {}


def test_generic_attributes_alone_keep_default_tag_attributes():
    attributes = options_for({"genericAttributes": ["id"]})["attributes"]
    assert attributes.pop("*") == {"id"}
    assert attributes == nh3.ALLOWED_ATTRIBUTES


def test_empty_generic_attributes_are_emitted():
    attributes = options_for({"tagAttributes": {"a": ["href"]}, "genericAttributes": []})["attributes"]
    assert attributes == {"a": {"href"}, "*": set()}


def test_link_rel_presence():
    assert "link_rel" not in options_for({})
    assert options_for({"linkRel": None})["link_rel"] is None
    assert options_for({"linkRel": ""})["link_rel"] == ""


def test_id_prefix_empty_string_is_passed_through():
    assert options_for({"idPrefix": ""})["id_prefix"] == ""


def test_forced_values_take_precedence_over_value_allow_list():
    options = options_for({
        "tagAttributeValues": {
            "a": {"target": ["_self", "_top"], "type": ["text/html"]},
            "div": {"role": ["alert"]},
        },
        "setTagAttributeValues": {"a": {"target": "_blank"}, "div": {"role": "status"}},
    })
    assert options["tag_attribute_values"] == {"a": {"type": {"text/html"}}}
    assert options["set_tag_attribute_values"] == {
        "a": {"target": "_blank"},
        "div": {"role": "status"},
    }


def test_url_relative_rewrite_is_translated_to_engine_tuple():
    options = options_for({
        "urlRelative": {"mode": "rewrite_with_base", "base": "https://example.com/docs/"},
    })
    assert options["url_relative"] == ("rewrite_with_base", "https://example.com/docs/")


def test_options_are_copies():
    model = ConfigValidator().parse({"tags": ["b"], "tagAttributes": {"a": ["href"]}})
    options = PolicyBuilder(model).engine_options()
    options["tags"].add("script")
    options["attributes"]["a"].add("onclick")
    assert model.tags == frozenset({"b"})
    assert model.tag_attributes == {"a": frozenset({"href"})}


def test_build_returns_engine_cleaner():
    cleaner = PolicyBuilder(ConfigValidator().parse({"tags": ["b"]})).build()
    assert isinstance(cleaner, nh3.Cleaner)
    assert cleaner.clean("<b>x</b><i>y</i>") == "<b>x</b>y"


def test_engine_defaults_build():
    options = PolicyBuilder(ConfigModel.engine_defaults()).engine_options()
    assert options["tags"] == nh3.ALLOWED_TAGS
    assert options["url_schemes"] == nh3.ALLOWED_URL_SCHEMES
    assert options["attributes"]["*"] == {"lang", "title"}
    assert options["link_rel"] == "noopener noreferrer"

"""
Tests for wobbly version resolution.

Covers:
- Candidate fallback with ||
- Suffix elision for undefined variables
- Classification into semantic versions, dates and names
- Ordering of pre-releases
- Parse errors
"""

import pytest

from repokeep.domain.version import Channel, Date, Name, SemanticVersion
from repokeep.errors import EmptyResolution, ParseError
from repokeep.version_spec import (
    EnvRef,
    Literal,
    Variable,
    VersionResolver,
    classify,
    evaluate,
    parse,
    resolve,
)

TODAY = {'date': '2026-10-18'}


class TestParse:
    """Test parsing specifications into candidates and fragments."""

    def test_single_literal(self):
        spec = parse("1.2.3")
        assert len(spec.candidates) == 1
        assert spec.candidates[0].fragments == (Literal("1.2.3"),)

    def test_candidates_split_on_double_bar(self):
        spec = parse("%tag || %date-nightly")
        assert [str(c) for c in spec.candidates] == ["%tag", "%date-nightly"]

    def test_fragment_kinds(self):
        spec = parse("%{github.ref_name}-${{ inputs.channel }}%build")
        assert spec.candidates[0].fragments == (
            Variable("github.ref_name"),
            Literal("-"),
            EnvRef("inputs.channel"),
            Variable("build"),
        )

    def test_double_bar_inside_env_reference_is_not_a_separator(self):
        spec = parse("${{ a || b }}")
        assert len(spec.candidates) == 1
        assert spec.candidates[0].fragments == (EnvRef("a || b"),)

    def test_blank_candidates_are_skipped(self):
        spec = parse(" || 1.0.0 ||  ")
        assert [str(c) for c in spec.candidates] == ["1.0.0"]

    def test_segments_split_at_literal_dash(self):
        candidate = parse("1.2.3-%custom-rc").candidates[0]
        assert candidate.segments() == [
            [Literal("1.2.3")],
            [Variable("custom")],
            [Literal("rc")],
        ]

    @pytest.mark.parametrize("text", [
        "",
        "   ||   ",
        "${{ unbalanced",
        "%{unbalanced",
        "${{ }}",
        "50%",
        "1.0-%",
        "%{not valid}",
    ])
    def test_malformed(self, text):
        with pytest.raises(ParseError):
            parse(text)

    def test_parse_error_reports_position(self):
        with pytest.raises(ParseError) as exc_info:
            parse("1.0 || %{x")
        assert exc_info.value.position == 7
        assert "1.0 || %{x" in str(exc_info.value)


class TestEvaluate:
    """Test candidate evaluation and fallback."""

    def test_first_non_empty_candidate_wins(self):
        text = evaluate("%custom || ${{input}} || %date", TODAY, {'input': '2.0.0'})
        assert text == "2.0.0"

    def test_variable_beats_environment_when_first(self):
        text = evaluate("%custom || ${{input}} || %date", {'custom': '3.0.0', **TODAY}, {'input': '2.0.0'})
        assert text == "3.0.0"

    def test_falls_through_to_last_candidate(self):
        assert evaluate("%custom || ${{input}} || %date", TODAY, {}) == "2026-10-18"

    def test_undefined_suffix_segment_is_dropped(self):
        assert evaluate("1.2.3-%custom", {}, {}) == "1.2.3"

    def test_defined_suffix_segment_is_kept(self):
        assert evaluate("1.2.3-%custom", {'custom': 'beta1'}, {}) == "1.2.3-beta1"

    def test_undefined_head_empties_candidate(self):
        assert evaluate("%tag-nightly || 0.1.0", {}, {}) == "0.1.0"

    def test_empty_string_counts_as_undefined(self):
        assert evaluate("%tag || 0.1.0", {'tag': ''}, {}) == "0.1.0"

    def test_nested_lookup(self):
        env = {'github': {'event': {'inputs': {'release': '3.1.0'}}}}
        assert evaluate("${{ github.event.inputs.release }}", {}, env) == "3.1.0"

    def test_flat_dotted_key_takes_precedence(self):
        env = {'github.ref_name': '4.0.0', 'github': {'ref_name': '5.0.0'}}
        assert evaluate("${{ github.ref_name }}", {}, env) == "4.0.0"

    def test_all_candidates_empty(self):
        with pytest.raises(EmptyResolution):
            evaluate("%a || %b", {}, {})


class TestClassify:
    """Test classification of evaluated text."""

    def test_semantic_version(self):
        version = classify("1.2.3")
        assert version.core == SemanticVersion(1, 2, 3, "1.2.3")
        assert version.kind == "version"
        assert not version.is_pre

    def test_two_part_version(self):
        version = classify("1.2")
        assert version.core.patch is None
        assert str(version) == "1.2"

    def test_semantic_version_with_channel_and_append(self):
        version = classify("1.2.3-beta2.fc39")
        assert version.channels == (Channel("beta", pre=2),)
        assert version.append == ("fc39",)
        assert str(version) == "1.2.3-beta2.fc39"

    def test_git_hash_channel(self):
        version = classify("1.2.3-gitffcc11")
        assert version.channels == (Channel("git", hash="ffcc11"),)

    def test_dash_number_is_literal_tag(self):
        version = classify("1.2.3-1")
        assert version.channels == (Channel("1"),)
        assert version.prerelease is None

    def test_date(self):
        version = classify("2026-10-18-rc2")
        assert version.core == Date(2026, 10, 18)
        assert version.kind == "date"
        assert version.prerelease == 2

    def test_invalid_date(self):
        with pytest.raises(ParseError):
            classify("2023-02-30")

    def test_prefix_stripped_before_digit(self):
        version = classify("v1.4.0", prefixes=["v"])
        assert version.prefix == "v"
        assert version.core == SemanticVersion(1, 4, 0, "1.4.0")
        assert str(version) == "v1.4.0"

    def test_prefix_not_stripped_from_word(self):
        version = classify("verbose", prefixes=["v"])
        assert version.prefix is None
        assert version.core == Name("verbose")

    def test_bare_name_with_date_becomes_dated_prerelease(self):
        version = classify("nightly", date="2026-10-18")
        assert version.core == Date(2026, 10, 18)
        assert version.channels == (Channel("nightly"),)
        assert str(version) == "2026.10.18-nightly"

    def test_bare_name_digits_are_ordinal(self):
        version = classify("nightly1", date="2026-10-18")
        assert version.channels == (Channel("nightly", pre=1),)
        assert version.prerelease == 1

    def test_bare_name_without_date(self):
        version = classify("nightly3")
        assert version.core == Name("nightly", pre=3)
        assert version.kind == "name"
        assert version.is_pre

    def test_garbage(self):
        with pytest.raises(ParseError):
            classify("not a version!")


class TestOrdering:
    """Test version ordering of resolved versions."""

    def test_nightly_ordinals(self):
        plain = resolve("nightly", TODAY)
        first = resolve("nightly1", TODAY)
        second = resolve("nightly2", TODAY)
        assert plain < first < second

    def test_prerelease_before_release(self):
        assert resolve("2026-10-18-nightly") < resolve("2026-10-18")
        assert resolve("1.2.3-rc1") < resolve("1.2.3")

    def test_semantic_versions(self):
        assert resolve("1.2.3") < resolve("1.10.0")
        assert resolve("2.0.0") >= resolve("2.0.0")

    def test_equality_agrees_with_ordering(self):
        tagged = classify("v1.2.3", prefixes=["v"])
        plain = resolve("1.2.3")
        assert tagged <= plain and tagged >= plain
        assert tagged == plain
        assert len({tagged, plain}) == 1
        assert resolve("1.2.3-rc1") != plain


class TestVersionResolver:
    """Test the resolver facade."""

    def test_fallback_to_dated_nightly(self):
        resolver = VersionResolver(prefixes=["v"])
        version = resolver.resolve("%tag || %date-nightly", TODAY, {})
        assert version.core == Date(2026, 10, 18)
        assert version.channels == (Channel("nightly"),)

    def test_tag_wins_when_bound(self):
        resolver = VersionResolver(prefixes=["v"])
        version = resolver.resolve("%tag || %date-nightly", {'tag': 'v2.1.0', **TODAY}, {})
        assert str(version) == "v2.1.0"
        assert version.text == "v2.1.0"

    def test_to_dict(self):
        data = resolve("1.2.3-beta.fc39").to_dict()
        assert data['kind'] == "version"
        assert data['version'] == {'major': 1, 'minor': 2, 'patch': 3}
        assert data['channels'] == [{'name': 'beta'}]
        assert data['append'] == ["fc39"]
        assert data['pre'] is True

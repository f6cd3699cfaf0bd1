"""Tests for legacy configuration upgrades.

Tests cover:
- upgrade_asset_args: the legacy ["--config", "<json>"] arguments
- Filter migration into exclude rules
- upgrade_config_document: whole documents, current documents untouched
- upgrade_config_dir: notices, failure report, nothing written on failure
"""

import io
from unittest import mock

import pytest
import yaml

from nobadfuncs.upgrade import (
    CONVERTERS,
    UPGRADED_NOTICE,
    ConfigVersion,
    LegacyCheckConfig,
    UpgradeError,
    UpgradeErrorKind,
    upgrade_asset_args,
    upgrade_config_dir,
    upgrade_config_document,
)

ERROR_PREFIX = (
    'failed to upgrade check "nobadfuncs" legacy configuration: '
    "failed to upgrade asset configuration: "
)


# ============================================
# upgrade_asset_args Tests
# ============================================

class TestUpgradeLegacyArgs:

    def test_config_json_map(self):
        assert upgrade_asset_args(["--config", '{"func a.b()": "no"}']) == {"func a.b()": "no"}

    def test_first_element_must_be_config(self):
        with pytest.raises(UpgradeError) as exc:
            upgrade_asset_args(["-help"])
        assert exc.value.kind is UpgradeErrorKind.UNSUPPORTED_ARGS
        assert exc.value.check == "nobadfuncs"
        assert str(exc.value) == ERROR_PREFIX + (
            'nobadfuncs-asset only supports legacy configuration if the first element '
            'in "args" is "--config"'
        )

    def test_exactly_one_element_after_config(self):
        with pytest.raises(UpgradeError) as exc:
            upgrade_asset_args(["--config", "a", "b"])
        assert exc.value.kind is UpgradeErrorKind.WRONG_ARGS_LENGTH
        assert exc.value.cause == (
            'nobadfuncs-asset only supports legacy configuration if "args" has exactly '
            'one element after "--config"'
        )

    def test_config_without_value(self):
        with pytest.raises(UpgradeError) as exc:
            upgrade_asset_args(["--config"])
        assert exc.value.kind is UpgradeErrorKind.WRONG_ARGS_LENGTH

    def test_malformed_json_names_character(self):
        with pytest.raises(UpgradeError) as exc:
            upgrade_asset_args(["--config", '{"foo":"bar",}\n'])
        assert exc.value.kind is UpgradeErrorKind.MALFORMED_JSON_MAP
        assert exc.value.cause.startswith(
            'failed to unmarshal second element of "args" in nobadfuncs-asset legacy '
            "configuration as JSON map: invalid character '}'"
        )

    def test_truncated_json(self):
        with pytest.raises(UpgradeError, match="unexpected end of JSON input"):
            upgrade_asset_args(["--config", '{"foo":'])

    def test_json_must_map_strings(self):
        with pytest.raises(UpgradeError) as exc:
            upgrade_asset_args(["--config", '{"foo": 1}'])
        assert exc.value.kind is UpgradeErrorKind.MALFORMED_JSON_MAP


# ============================================
# upgrade_config_document Tests
# ============================================

class TestUpgradeConfigDocument:

    def test_args_become_bad_funcs(self):
        text = (
            "checks:\n"
            "  nobadfuncs:\n"
            "    args:\n"
            '      - "--config"\n'
            "      - |\n"
            "        {\n"
            '          "func (*http.Client).do(Any)": "use safe_do instead"\n'
            "        }\n"
        )
        result = upgrade_config_document(text, legacy=True)
        assert result.upgraded
        assert result.notice == UPGRADED_NOTICE
        assert yaml.safe_load(result.text) == {
            "checks": {"nobadfuncs": {"config": {"bad-funcs": {
                "func (*http.Client).do(Any)": "use safe_do instead",
            }}}},
        }

    def test_filters_migrated_to_exclude(self):
        text = (
            "checks:\n"
            "  nobadfuncs:\n"
            "    filters:\n"
            '      - value: "should have comment or be unexported"\n'
            "      - type: name\n"
            '        value: ".*.pb.go"\n'
        )
        result = upgrade_config_document(text, legacy=True)
        assert result.text == (
            "checks:\n"
            "  nobadfuncs:\n"
            "    filters:\n"
            "    - value: should have comment or be unexported\n"
            "    exclude:\n"
            "      names:\n"
            "      - .*.pb.go\n"
        )

    def test_path_filters_and_empty_args(self):
        text = (
            "checks:\n"
            "  nobadfuncs:\n"
            "    args: []\n"
            "    filters:\n"
            "      - type: path\n"
            "        value: generated\n"
        )
        node = yaml.safe_load(upgrade_config_document(text, legacy=True).text)["checks"]["nobadfuncs"]
        assert node == {"exclude": {"paths": ["generated"]}}

    def test_other_checks_untouched(self):
        text = "checks:\n  other:\n    args: [-x]\n  nobadfuncs:\n    args: ['--config', '{}']\n"
        checks = yaml.safe_load(upgrade_config_document(text, legacy=True).text)["checks"]
        assert checks["other"] == {"args": ["-x"]}
        assert checks["nobadfuncs"] == {"config": {"bad-funcs": {}}}

    def test_current_document_returned_byte_for_byte(self):
        text = "\nchecks:\n  nobadfuncs:\n    config:\n      # comment\n      bad-funcs: {a: b}\n"
        result = upgrade_config_document(text, legacy=False)
        assert result.text == text
        assert not result.upgraded
        assert result.notice is None

    def test_upgrading_twice_is_stable(self):
        text = "checks:\n  nobadfuncs:\n    args: ['--config', '{\"a\": \"b\"}']\n"
        once = upgrade_config_document(text, legacy=True).text
        assert upgrade_config_document(once, legacy=False).text == once

    def test_one_converter_per_legacy_version(self):
        assert set(CONVERTERS) == {ConfigVersion.LEGACY}
        current = CONVERTERS[ConfigVersion.LEGACY](LegacyCheckConfig())
        assert current.version is ConfigVersion.V0
        assert current.node == {}


# ============================================
# upgrade_config_dir Tests
# ============================================

def _legacy(tmp_path, text):
    (tmp_path / "check.yml").write_text(text)
    return tmp_path


class TestUpgradeConfigDir:

    def test_writes_current_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _legacy(tmp_path, "checks:\n  nobadfuncs:\n    args: ['--config', '{\"a\": \"b\"}']\n")
        out = io.StringIO()
        assert upgrade_config_dir(tmp_path, out) == 0
        assert out.getvalue() == "Upgraded configuration for check-plugin.yml\n"
        assert not (tmp_path / "check.yml").exists()
        assert yaml.safe_load((tmp_path / "check-plugin.yml").read_text()) == {
            "checks": {"nobadfuncs": {"config": {"bad-funcs": {"a": "b"}}}},
        }
        assert list(tmp_path.glob("*.tmp")) == []

    @pytest.mark.parametrize("args, cause", [
        (
            '["-help"]',
            'nobadfuncs-asset only supports legacy configuration if the first element in "args" is "--config"',
        ),
        (
            '["--config", "a", "b"]',
            'nobadfuncs-asset only supports legacy configuration if "args" has exactly one element after "--config"',
        ),
    ])
    def test_failure_reported_and_nothing_written(self, tmp_path, monkeypatch, args, cause):
        monkeypatch.chdir(tmp_path)
        text = f"checks:\n  nobadfuncs:\n    args: {args}\n"
        _legacy(tmp_path, text)
        out = io.StringIO()
        assert upgrade_config_dir(tmp_path, out) == 1
        assert out.getvalue() == (
            "Failed to upgrade configuration:\n"
            f"\tcheck-plugin.yml: failed to upgrade configuration: {ERROR_PREFIX}{cause}\n"
        )
        assert (tmp_path / "check.yml").read_text() == text
        assert not (tmp_path / "check-plugin.yml").exists()

    def test_malformed_json_reported(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _legacy(tmp_path, "checks:\n  nobadfuncs:\n    args:\n      - --config\n      - |\n        {\"foo\":\"bar\",}\n")
        out = io.StringIO()
        assert upgrade_config_dir(tmp_path, out) == 1
        assert "as JSON map: invalid character '}'" in out.getvalue()

    def test_current_file_left_alone(self, tmp_path):
        text = "\nchecks:\n  nobadfuncs:\n    config:\n      # comment\n      bad-funcs: {}\n"
        (tmp_path / "check-plugin.yml").write_text(text)
        out = io.StringIO()
        assert upgrade_config_dir(tmp_path, out) == 0
        assert out.getvalue() == ""
        assert (tmp_path / "check-plugin.yml").read_text() == text

    def test_empty_directory(self, tmp_path):
        assert upgrade_config_dir(tmp_path, io.StringIO()) == 0

    def test_both_files_present_is_reported(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        legacy_text = "checks:\n  nobadfuncs:\n    args: ['--config', '{}']\n"
        current_text = "checks:\n  nobadfuncs:\n    config:\n      bad-funcs: {}\n"
        _legacy(tmp_path, legacy_text)
        (tmp_path / "check-plugin.yml").write_text(current_text)
        out = io.StringIO()
        assert upgrade_config_dir(tmp_path, out) == 1
        assert out.getvalue() == (
            "Failed to upgrade configuration:\n"
            "\tcheck-plugin.yml: failed to upgrade configuration: "
            "check.yml and check-plugin.yml both exist; remove one of them\n"
        )
        assert (tmp_path / "check.yml").read_text() == legacy_text
        assert (tmp_path / "check-plugin.yml").read_text() == current_text

    def test_failed_write_leaves_no_temp_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        text = "checks:\n  nobadfuncs:\n    args: ['--config', '{}']\n"
        _legacy(tmp_path, text)
        out = io.StringIO()
        with mock.patch("nobadfuncs.upgrade.os.replace", side_effect=OSError("disk full")):
            assert upgrade_config_dir(tmp_path, out) == 1
        assert out.getvalue() == (
            "Failed to upgrade configuration:\n"
            "\tcheck-plugin.yml: failed to upgrade configuration: disk full\n"
        )
        assert list(tmp_path.glob("*.tmp")) == []
        assert not (tmp_path / "check-plugin.yml").exists()
        assert (tmp_path / "check.yml").read_text() == text

"""
Tests for config items: files, repositories, kernel parameters and tool settings.
"""

import pytest

from zephyrus.items import *
from zephyrus.items.hooks import PostHookScope
from zephyrus.model import ConfigModel


class TestFile:
    @pytest.mark.parametrize(
        "permissions, expected",
        [("rw-r--r--", 0o644), ("rwxr-xr-x", 0o755), ("r--", 0o444), ("---------", 0)],
    )
    def test_parse_permissions(self, permissions, expected):
        assert File.parse_permissions(permissions) == expected

    def test_malformed_permissions(self):
        with pytest.raises(AssertionError):
            File.parse_permissions("rwz")

    def test_defaults(self):
        item = File("/etc/foo.conf", content="x")
        assert item.mode == 0o644
        assert item.user == "root"

    def test_content_is_rendered_from_model(self):
        model = ConfigModel(configs=[], managers=[], steps=[])
        item = File("/etc/foo.conf", content=lambda model: "rendered\n")
        assert item.content(model) == b"rendered\n"

    def test_local_source(self, tmp_path):
        source = tmp_path / "script.sh"
        source.write_text("#!/bin/sh\n")
        source.chmod(0o750)
        item = File("/usr/local/bin/script.sh", source=str(source))
        assert item.content(ConfigModel(configs=[], managers=[], steps=[])) == b"#!/bin/sh\n"
        assert item.mode == 0o750

    def test_download_source(self, mocker):
        response = mocker.Mock(status=200, data=b"downloaded")
        request = mocker.patch("zephyrus.items.file.request", return_value=response)
        item = File("/etc/foo.conf", source="https://example.org/foo.conf")
        assert item.content(ConfigModel(configs=[], managers=[], steps=[])) == b"downloaded"
        request.assert_called_once_with("GET", "https://example.org/foo.conf")

    def test_content_and_source_are_exclusive(self):
        with pytest.raises(AssertionError):
            File("/etc/foo.conf", content="x", source="/tmp/foo")


class TestRepositories:
    def test_pacman_repo_section(self):
        repo = PacmanRepo("g14", "https://arch.asus-linux.org", sig_level="Optional TrustAll")
        assert repo.section() == "[g14]\nSigLevel = Optional TrustAll\nServer = https://arch.asus-linux.org"

    def test_conflicting_servers(self):
        with pytest.raises(AssertionError):
            PacmanRepo("g14", "https://a.org").merge(PacmanRepo("g14", "https://b.org"))

    def test_copr_name_format(self):
        assert str(CoprRepo("lukenukem/asus-linux")) == "CoprRepo('lukenukem/asus-linux')"
        with pytest.raises(AssertionError):
            CoprRepo("asus-linux")


class TestKernelParameter:
    def test_parse_with_value(self):
        parameter = KernelParameter.parse("amdgpu.ppfeaturemask=0xffffffff")
        assert parameter.name == "amdgpu.ppfeaturemask"
        assert parameter.value == "0xffffffff"
        assert parameter.token() == "amdgpu.ppfeaturemask=0xffffffff"

    def test_parse_flag(self):
        parameter = KernelParameter.parse("quiet")
        assert parameter.value is None
        assert parameter.token() == "quiet"

    def test_identity_is_the_name(self):
        assert KernelParameter("amd_pstate", "active") == KernelParameter("amd_pstate", "guided")

    def test_invalid_name(self):
        with pytest.raises(AssertionError):
            KernelParameter("bad name")


class TestToolSettings:
    def test_gpu_mode_notation(self):
        assert GpuMode("discrete").apply() == "supergfxctl -m AsusMuxDgpu"
        assert GpuMode("hybrid").parse("Hybrid") == "hybrid"

    def test_invalid_value(self):
        with pytest.raises(AssertionError, match="invalid value"):
            GpuMode("nvidia")

    def test_platform_profile(self):
        profile = PlatformProfile("quiet")
        assert profile.apply() == "asusctl profile -P Quiet"
        assert profile.parse("Active profile is Performance\nProfile on AC is Quiet") == "performance"

    def test_keyboard_brightness(self):
        assert KeyboardBrightness("med").parse("Current keyboard led brightness: Med") == "med"

    def test_power_profile(self):
        assert PowerProfile("balanced").parse("power-saver\n") == "power-saver"
        assert PowerProfile("balanced").parse("unknown") is None

    def test_settings_are_identified_by_class(self):
        assert GpuMode("hybrid") == GpuMode("integrated")
        assert GpuMode("hybrid") != PowerProfile("balanced")


class TestPostHook:
    def test_triggers_become_ordering_constraints(self):
        rules = File("/etc/udev/rules.d/80-nvidia-off.rules", content="")
        hook = PostHook("reload-udev-rules", execute=lambda: None, trigger=rules)
        assert rules in hook.after

    def test_scope_adds_all_items_as_triggers(self):
        hook = PostHook("rebuild-initramfs", execute=lambda: None)
        items = PostHookScope(File("/etc/modprobe.d/nvidia.conf", content=""), None, hook)
        assert len(items) == 2
        assert File("/etc/modprobe.d/nvidia.conf") in hook.trigger


class TestUserGroupAssignment:
    @pytest.mark.parametrize("username, group", [
        ("tester; rm -rf /", "input"),
        ("tester", "input wheel"),
        ("", "input"),
        ("tester", "a" * 40),
        ("-tester", "input"),
    ])
    def test_invalid_names(self, username, group):
        with pytest.raises(AssertionError, match="invalid"):
            UserGroupAssignment(username, group)

    def test_root_is_rejected(self):
        with pytest.raises(AssertionError, match="root"):
            UserGroupAssignment("root", "input")

    def test_entry(self):
        item = UserGroupAssignment("j.doe", "input")
        assert item.entry == "j.doe:input"
        assert UserGroupAssignment.from_entry(item.entry) == item

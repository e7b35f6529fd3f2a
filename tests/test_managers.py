"""
Tests for the config managers. Commands are mocked, files live below tmp_path.
"""

import os
from inspect import cleandoc
from pwd import getpwuid

import pytest

from zephyrus.items import *
from zephyrus.managers import *
from zephyrus.managers.kernel import read_cmdline, set_parameter, write_cmdline
from zephyrus.managers.pacman import parse_package_list
from zephyrus.managers.repository import read_sections, remove_section, set_section
from zephyrus.model import ConfigModel, MergedConfig
from zephyrus.validation import ValidationError


def model_of(manager, *items):
    return ConfigModel(configs=[MergedConfig("test", list(items))], managers=[manager], steps=[])


def execute_all(actions):
    for action in actions:
        action.execute()


class TestKernelCmdline:
    def test_set_parameter_replaces_in_place(self):
        assert set_parameter(["loglevel=3", "quiet"], "loglevel=4") == ["loglevel=4", "quiet"]
        assert set_parameter(["quiet"], "amd_pstate=active") == ["quiet", "amd_pstate=active"]

    def test_read_cmdline(self, grub_defaults):
        assert read_cmdline(grub_defaults.read_text()) == ["loglevel=3", "quiet"]
        assert read_cmdline("GRUB_TIMEOUT=5\n") == []
        assert read_cmdline("GRUB_CMDLINE_LINUX_DEFAULT=quiet\n") == ["quiet"]
        assert read_cmdline("GRUB_CMDLINE_LINUX_DEFAULT='quiet  splash'\n") == ["quiet", "splash"]

    def test_write_cmdline(self):
        content = 'GRUB_TIMEOUT=5\nGRUB_CMDLINE_LINUX_DEFAULT="quiet"\nGRUB_CMDLINE_LINUX=""\n'
        assert write_cmdline(content, ["quiet", "splash"]) == (
            'GRUB_TIMEOUT=5\nGRUB_CMDLINE_LINUX_DEFAULT="quiet splash"\nGRUB_CMDLINE_LINUX=""\n'
        )
        assert write_cmdline("GRUB_TIMEOUT=5\n", ["quiet"]) == 'GRUB_TIMEOUT=5\nGRUB_CMDLINE_LINUX_DEFAULT="quiet"\n'


class TestKernelParameterManager:
    def test_install_and_cleanup(self, grub_defaults):
        manager = KernelParameterManager(grub_defaults=str(grub_defaults))
        items = [KernelParameter("quiet"), KernelParameter("loglevel", "4"), KernelParameter("amd_pstate", "active")]
        model = model_of(manager, *items)

        actions = list(manager.get_install_actions(items, model, "planning"))
        assert len(actions) == 1
        assert actions[0].installs == [KernelParameter("amd_pstate")]
        assert actions[0].updates == [KernelParameter("loglevel")]
        assert "replace loglevel=3 with loglevel=4" in actions[0].additional_info

        execute_all(actions)
        assert 'GRUB_CMDLINE_LINUX_DEFAULT="loglevel=4 quiet amd_pstate=active"' in grub_defaults.read_text()
        assert list(grub_defaults.parent.glob("grub.backup-*"))
        assert list(manager.get_install_actions(items, model, "execution")) == []

        # parameters that were on the command line before are never removed
        cleanup = list(manager.get_cleanup_actions([KernelParameter("loglevel")], model, "execution"))
        assert [item.name for action in cleanup for item in action.removes] == ["amd_pstate"]
        execute_all(cleanup)
        assert 'GRUB_CMDLINE_LINUX_DEFAULT="loglevel=4 quiet"' in grub_defaults.read_text()

    def test_repeated_runs_keep_a_single_token(self, grub_defaults):
        manager = KernelParameterManager(grub_defaults=str(grub_defaults))
        item = KernelParameter("amd_pstate", "active")
        model = model_of(manager, item)
        for _ in range(3):
            execute_all(manager.get_install_actions([item], model, "execution"))
        assert read_cmdline(grub_defaults.read_text()) == ["loglevel=3", "quiet", "amd_pstate=active"]
        assert manager.get_state_current(item).token == "amd_pstate=active"

    def test_missing_grub_defaults(self, tmp_path):
        manager = KernelParameterManager(grub_defaults=str(tmp_path / "missing"))
        item = KernelParameter("quiet")
        with pytest.raises(AssertionError, match="GRUB"):
            manager.assert_installable(item, model_of(manager, item))


class TestPacmanConf:
    PACMAN_CONF = cleandoc('''
        [options]
        HoldPkg = pacman glibc

        [core]
        Include = /etc/pacman.d/mirrorlist

        [extra]
        Include = /etc/pacman.d/mirrorlist
    ''') + "\n"

    def test_read_sections(self):
        sections = read_sections(self.PACMAN_CONF)
        assert list(sections) == ["options", "core", "extra"]
        assert "HoldPkg" in sections["options"]

    def test_set_section_appends(self):
        content = set_section(self.PACMAN_CONF, "g14", "[g14]\nServer = https://arch.asus-linux.org")
        assert content.endswith("[extra]\nInclude = /etc/pacman.d/mirrorlist\n\n[g14]\nServer = https://arch.asus-linux.org\n")

    def test_set_section_replaces(self):
        content = set_section(self.PACMAN_CONF, "core", "[core]\nServer = https://example.org")
        sections = read_sections(content)
        assert list(sections) == ["options", "core", "extra"]
        assert "Server = https://example.org" in sections["core"]
        assert "mirrorlist" not in sections["core"]

    def test_remove_section(self):
        content = remove_section(self.PACMAN_CONF, "core")
        assert list(read_sections(content)) == ["options", "extra"]

    def test_repo_manager(self, mocker, tmp_path):
        shell = mocker.patch("zephyrus.managers.repository.shell")
        pacman_conf = tmp_path / "pacman.conf"
        pacman_conf.write_text(self.PACMAN_CONF)
        manager = PacmanRepoManager(pacman_conf=str(pacman_conf))
        repo = PacmanRepo("g14", server="https://arch.asus-linux.org")
        model = model_of(manager, repo)

        execute_all(manager.get_install_actions([repo], model, "execution"))
        shell.assert_called_with("pacman -Sy")
        assert "[g14]\nServer = https://arch.asus-linux.org" in pacman_conf.read_text()
        assert list(manager.get_install_actions([repo], model, "execution")) == []

        execute_all(manager.get_cleanup_actions([], model, "execution"))
        assert "[g14]" not in pacman_conf.read_text()
        assert "[core]" in pacman_conf.read_text()


class TestPacmanPackageManager:
    @pytest.fixture
    def pacman(self, mocker):
        outputs = {
            "pacman -Qqe": "git\nasusctl\n",
            "pacman -Qq": "git\nasusctl\nlibfoo\nlaptop-mode-tools\n",
        }
        mocker.patch("zephyrus.managers.pacman.shell_output", side_effect=lambda command, **kwargs: outputs.get(command, ""))
        mocker.patch("zephyrus.managers.pacman.command_exists", return_value=True)
        return PacmanPackageManager(aur_helper=AurHelper(user="tester"))

    def test_actions(self, pacman):
        items = [
            Package("git"),
            Package("libfoo"),
            Package("supergfxctl"),
            Package("auto-cpufreq", aur=True),
            ConflictingPackage("laptop-mode-tools"),
        ]
        model = model_of(pacman, *items)
        pacman.initialize(model, "planning")
        descriptions = [action.description for action in pacman.get_install_actions(items, model, "planning")]
        assert descriptions == [
            "remove conflicting package(s): laptop-mode-tools",
            "mark package(s) explicitly installed: libfoo",
            "install package(s): supergfxctl",
            "install AUR package(s): auto-cpufreq",
        ]

    def test_aur_requires_helper(self, mocker):
        manager = PacmanPackageManager()
        item = Package("auto-cpufreq", aur=True)
        with pytest.raises(AssertionError, match="AUR helper"):
            manager.assert_installable(item, model_of(manager, item))

    def test_install_retries(self, pacman, mocker):
        shell_retry = mocker.patch("zephyrus.managers.pacman.shell_retry")
        pacman.install_from_repo([Package("supergfxctl")])
        command = shell_retry.call_args.args[0]
        assert command == "pacman -Syu --needed --noconfirm --asexplicit supergfxctl"
        assert shell_retry.call_args.kwargs["attempts"] == 3
        assert "supergfxctl" in pacman.managed_packages_store.elements()

    def test_cleanup_only_touches_managed_packages(self, pacman):
        pacman.refresh_package_lists()
        pacman.managed_packages_store.replace_all(["asusctl"])
        model = model_of(pacman, Package("git"))
        actions = list(pacman.get_cleanup_actions([Package("git")], model, "execution"))
        assert [item.name for item in actions[0].removes] == ["asusctl"]

    def test_parse_package_list(self):
        assert parse_package_list("error: there is nothing to do") == []
        assert parse_package_list("git\n\nvim\n") == ["git", "vim"]


class TestDnfPackageManager:
    def test_actions(self, mocker):
        mocker.patch("zephyrus.managers.dnf.shell_output", return_value="git\nlaptop-mode-tools\n")
        shell_retry = mocker.patch("zephyrus.managers.dnf.shell_retry")
        shell = mocker.patch("zephyrus.managers.dnf.shell")
        manager = DnfPackageManager()
        items = [Package("git"), Package("asusctl"), ConflictingPackage("laptop-mode-tools")]
        model = model_of(manager, *items)
        manager.initialize(model, "execution")

        actions = list(manager.get_install_actions(items, model, "execution"))
        assert [action.description for action in actions] == [
            "remove conflicting package(s): laptop-mode-tools",
            "install package(s): asusctl",
        ]
        execute_all(actions)
        shell.assert_called_with("dnf remove -y laptop-mode-tools")
        assert shell_retry.call_args.args[0] == "dnf install -y asusctl"
        assert manager.managed_packages_store.elements() == ["asusctl"]

    def test_arch_qualified_names(self, mocker):
        shell_output = mocker.patch(
            "zephyrus.managers.dnf.shell_output",
            return_value="xorg-x11-drv-nvidia-libs\nxorg-x11-drv-nvidia-libs.x86_64\nxorg-x11-drv-nvidia-libs\nxorg-x11-drv-nvidia-libs.i686\n",
        )
        manager = DnfPackageManager()
        items = [Package("xorg-x11-drv-nvidia-libs.i686"), Package("xorg-x11-drv-nvidia-libs")]
        model = model_of(manager, *items)
        manager.initialize(model, "planning")
        assert "%{ARCH}" in shell_output.call_args.args[0]
        assert list(manager.get_install_actions(items, model, "planning")) == []


class TestSystemdUnitManager:
    def test_enable_disable_mask(self, mocker):
        status = {"tlp.service": "disabled", "laptop-mode.service": "enabled", "systemd-rfkill.service": "enabled"}
        mocker.patch(
            "zephyrus.managers.systemd.shell_output",
            side_effect=lambda command, **kwargs: status[command.split()[-1]],
        )
        shell = mocker.patch("zephyrus.managers.systemd.shell")
        manager = SystemdUnitManager()
        items = [SystemdUnit("tlp.service"), DisabledUnit("laptop-mode.service"), MaskedUnit("systemd-rfkill.service")]
        model = model_of(manager, *items)

        actions = list(manager.get_install_actions(items, model, "execution"))
        assert [action.description for action in actions] == [
            "disable conflicting systemd unit(s): laptop-mode.service",
            "mask systemd unit(s): systemd-rfkill.service",
            "enable systemd unit(s): tlp.service",
        ]
        execute_all(actions)
        commands = [call.args[0] for call in shell.call_args_list]
        assert "systemctl disable --now laptop-mode.service" in commands
        assert "systemctl mask systemd-rfkill.service" in commands
        assert "systemctl enable --now tlp.service" in commands

        cleanup = list(manager.get_cleanup_actions([], model, "execution"))
        assert [action.description for action in cleanup] == [
            "disable systemd unit(s): tlp.service",
            "unmask systemd unit(s): systemd-rfkill.service",
        ]

    def test_disabled_unit_conflicts_with_enabled(self):
        manager = SystemdUnitManager()
        item = DisabledUnit("tlp.service")
        with pytest.raises(AssertionError, match="also declared"):
            manager.assert_installable(item, model_of(manager, item, SystemdUnit("tlp.service")))


class TestFileManager:
    def test_create_update_delete(self, tmp_path):
        manager = FileManager()
        target = tmp_path / "etc" / "modprobe.d" / "nvidia.conf"
        item = File(str(target), content="options nvidia NVreg_DynamicPowerManagement=0x02\n", owner=getpwuid(os.getuid()).pw_name)
        model = model_of(manager, item)

        actions = list(manager.get_install_actions([item], model, "execution"))
        assert actions[0].description == f"create file: {target}"
        execute_all(actions)
        assert target.read_text() == "options nvidia NVreg_DynamicPowerManagement=0x02\n"
        assert target.stat().st_mode & 0o777 == 0o644
        assert list(manager.get_install_actions([item], model, "execution")) == []

        cleanup = list(manager.get_cleanup_actions([], model, "execution"))
        assert cleanup[0].description == f"delete file: {target}"
        execute_all(cleanup)
        assert not target.exists()

    def test_unmanaged_file_is_backed_up(self, tmp_path):
        manager = FileManager()
        target = tmp_path / "tlp.conf"
        target.write_text("# distribution default\n")
        item = File(str(target), content="TLP_ENABLE=1\n", owner=getpwuid(os.getuid()).pw_name)
        model = model_of(manager, item)

        actions = list(manager.get_install_actions([item], model, "execution"))
        assert actions[0].description == f"update file: {target}"
        execute_all(actions)
        backups = manager.backups_store.elements()
        assert len(backups) == 1
        assert open(backups[0]).read() == "# distribution default\n"

    def test_invalid_content_is_rejected(self, tmp_path):
        manager = FileManager()
        item = File(str(tmp_path / "tlp.conf"), content="CPU_SCALING_GOVERNOR_ON_AC=turbo\n")
        with pytest.raises(ValidationError):
            manager.assert_installable(item, model_of(manager, item))

    def test_validation_can_be_skipped(self, tmp_path):
        manager = FileManager()
        item = File(str(tmp_path / "tlp.conf"), content="garbage\n", validate=False)
        manager.assert_installable(item, model_of(manager, item))


class TestToolSettingManager:
    def test_setting_is_applied_when_different(self, mocker):
        mocker.patch("zephyrus.managers.tool_setting.command_exists", return_value=True)
        mocker.patch("zephyrus.managers.tool_setting.shell_output", return_value="Active profile is Balanced")
        shell = mocker.patch("zephyrus.managers.tool_setting.shell")
        manager = ToolSettingManager()
        item = PlatformProfile("quiet")
        model = model_of(manager, item)

        actions = list(manager.get_install_actions([item], model, "execution"))
        assert actions[0].description == "set PlatformProfile to quiet (currently balanced)"
        execute_all(actions)
        shell.assert_called_once_with("asusctl profile -P Quiet")

    def test_setting_already_active(self, mocker):
        mocker.patch("zephyrus.managers.tool_setting.command_exists", return_value=True)
        mocker.patch("zephyrus.managers.tool_setting.shell_output", return_value="balanced\n")
        manager = ToolSettingManager()
        item = PowerProfile("balanced")
        assert list(manager.get_install_actions([item], model_of(manager, item), "execution")) == []


class TestUserGroupManager:
    def test_assignment(self, mocker):
        mocker.patch("zephyrus.managers.user_group.group_members", return_value={"input": ["someone"], "wheel": ["tester"]})
        shell = mocker.patch("zephyrus.managers.user_group.shell")
        manager = UserGroupManager()
        item = UserGroupAssignment("tester", "input")
        model = model_of(manager, item)
        manager.assert_installable(item, model)

        execute_all(manager.get_install_actions([item], model, "execution"))
        shell.assert_called_once_with("gpasswd --add tester input")

    def test_unknown_group(self, mocker):
        mocker.patch("zephyrus.managers.user_group.group_members", return_value={"wheel": ["tester"]})
        manager = UserGroupManager()
        item = UserGroupAssignment("tester", "input")
        with pytest.raises(AssertionError, match="does not exist"):
            manager.assert_installable(item, model_of(manager, item))

    def test_cleanup_of_earlier_assignment(self, mocker):
        mocker.patch("zephyrus.managers.user_group.group_members", return_value={"input": ["tester"], "video": ["tester"]})
        shell = mocker.patch("zephyrus.managers.user_group.shell")
        manager = UserGroupManager()
        manager.managed_assignments_store.add_all(["tester:input", "tester:video"])
        keep = UserGroupAssignment("tester", "input")
        execute_all(manager.get_cleanup_actions([keep], model_of(manager, keep), "execution"))
        shell.assert_called_once_with("gpasswd --delete tester video")
        assert manager.managed_assignments_store.elements() == ["tester:input"]

"""
Tests for the command line interface.
"""

from subprocess import CalledProcessError

import pytest

from zephyrus.cli import build_parser, main
from zephyrus.diagnostics import CheckResult
from zephyrus.preferences import DEFAULT_PREFERENCES, preferences_path


@pytest.fixture
def detected(mocker, arch_context):
    return mocker.patch("zephyrus.cli.SystemContext.detect", return_value=arch_context)


class TestParser:
    def test_setup_flags(self):
        args = build_parser().parse_args(["setup", "--dry-run", "--summary", "--log-dir", "/tmp/logs"])
        assert args.command == "setup"
        assert args.dry_run and args.summary
        assert not args.force
        assert str(args.log_dir) == "/tmp/logs"

    def test_gpu_run_passes_arguments_through(self):
        args = build_parser().parse_args(["gpu", "run", "glxgears", "-info"])
        assert args.program == ["glxgears", "-info"]

    def test_invalid_gpu_mode(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["gpu", "switch", "nvidia"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main([])


class TestPreferences:
    def test_init_and_show(self, capsys):
        assert main(["init-preferences"]) == 0
        assert preferences_path().read_text() == DEFAULT_PREFERENCES
        capsys.readouterr()
        assert main(["show-preferences"]) == 0
        assert capsys.readouterr().out == DEFAULT_PREFERENCES

    def test_init_keeps_existing_file(self):
        path = preferences_path()
        path.parent.mkdir(parents=True)
        path.write_text("[power]\npower_manager = auto-cpufreq\n")
        assert main(["init-preferences"]) == 0
        assert "auto-cpufreq" in path.read_text()

    def test_show_without_file(self):
        assert main(["show-preferences"]) == 1


class TestHardware:
    def test_show_without_cache(self):
        assert main(["show-hardware"]) == 1

    def test_detect_and_show(self, mocker, g14_hardware, capsys):
        mocker.patch("zephyrus.hardware.detect_hardware", return_value=g14_hardware)
        assert main(["detect-hardware"]) == 0
        assert main(["show-hardware"]) == 0
        output = capsys.readouterr().out
        assert "PCI:101:0:0" in output
        assert "ga403wr" in output


class TestGenerateAndValidate:
    def test_generate(self, detected, tmp_path):
        output_dir = tmp_path / "generated"
        assert main(["generate", str(output_dir)]) == 0
        xorg = output_dir / "etc" / "X11" / "xorg.conf.d" / "10-hybrid.conf"
        assert 'BusID "PCI:101:0:0"' in xorg.read_text()
        assert (output_dir / "etc" / "systemd" / "system" / "zephyrus-nvidia-suspend.service").is_file()
        assert (output_dir / "etc" / "tlp.conf").is_file()

    def test_validate_paths(self, tmp_path):
        good = tmp_path / "tlp.conf"
        good.write_text("TLP_ENABLE=1\n")
        assert main(["validate", str(good)]) == 0
        bad = tmp_path / "rules.d" / "90-broken.rules"
        bad.parent.mkdir()
        bad.write_text("not a rule\n")
        assert main(["validate", str(good), str(bad)]) == 1


class TestBackup:
    def test_create_list_validate(self, detected, mocker, tmp_path, capsys):
        conf = tmp_path / "tlp.conf"
        conf.write_text("TLP_ENABLE=1\n")
        mocker.patch("zephyrus.cli.tracked_paths", return_value=[str(conf)])
        assert main(["backup", "list"]) == 0
        assert "no backups found" in capsys.readouterr().out
        assert main(["backup", "create", "--description", "manual"]) == 0
        assert main(["backup", "list"]) == 0
        name = capsys.readouterr().out.split("- ")[-1].split()[0]
        assert name.startswith("manual_")
        assert main(["backup", "validate", name]) == 0

    def test_unknown_backup(self):
        assert main(["backup", "restore", "missing", "--force"]) == 1


class TestSetup:
    def test_requires_root(self, detected, mocker):
        mocker.patch("zephyrus.core.getuid", return_value=1000)
        assert main(["setup", "--dry-run"]) == 1


class TestDelegation:
    def test_gpu_switch(self, mocker):
        switch = mocker.patch("zephyrus.cli.gpu.switch")
        assert main(["gpu", "switch", "integrated"]) == 0
        switch.assert_called_once_with("integrated")

    @pytest.mark.parametrize("action", ["suspend", "resume"])
    def test_nvidia_suspend(self, mocker, action):
        handler = mocker.patch("zephyrus.cli.SuspendHandler").return_value
        assert main(["nvidia-suspend", action]) == 0
        getattr(handler, action).assert_called_once_with()


class TestErrorReporting:
    def test_failed_command_exit_code(self, mocker, capsys):
        mocker.patch("zephyrus.cli.gpu.switch", side_effect=CalledProcessError(2, "supergfxctl -m Integrated"))
        assert main(["gpu", "switch", "integrated"]) == 1
        assert "supergfxctl -m Integrated" in capsys.readouterr().out

    def test_ctrl_c(self, mocker):
        mocker.patch("zephyrus.cli.gpu.switch", side_effect=KeyboardInterrupt)
        with pytest.raises(SystemExit, match="interrupted"):
            main(["gpu", "switch", "integrated"])


class TestTroubleshoot:
    @pytest.fixture
    def checks(self, mocker):
        return mocker.patch("zephyrus.cli.run_checks", return_value=[CheckResult("GPU detection", True, "found: 01:00.0")])

    def test_report_defaults_to_tmp(self):
        args = build_parser().parse_args(["troubleshoot", "--report"])
        assert str(args.report) == "/tmp"
        assert not args.fix

    def test_log_analysis_and_report(self, detected, checks, mocker, tmp_path, capsys):
        mocker.patch("zephyrus.troubleshoot.shell_output", return_value="")
        logs = tmp_path / "logs"
        logs.mkdir()
        (logs / "setup_20261019_100000.log").write_text("[ERROR] error: failed retrieving file 'asusctl-6.0.12-1-x86_64.pkg.tar.zst'\n")
        assert main(["troubleshoot", "--log-dir", str(logs), "--report", str(tmp_path / "reports")]) == 0
        assert "network error during package download" in capsys.readouterr().out
        report = next((tmp_path / "reports").glob("system-report-*.txt")).read_text()
        assert "[PASS] GPU detection" in report
        assert "package/network_error (1x)" in report

    def test_journal_without_log_dir(self, detected, checks, mocker):
        journal = mocker.patch("zephyrus.cli.journal_text", return_value="")
        assert main(["troubleshoot"]) == 0
        journal.assert_called_once_with()
        assert len(checks.call_args.args[0]) == 13

    def test_fix_requires_root(self, detected, mocker):
        mocker.patch("zephyrus.cli.getuid", return_value=1000)
        troubleshooter = mocker.patch("zephyrus.cli.Troubleshooter")
        assert main(["troubleshoot", "--fix"]) == 1
        troubleshooter.assert_not_called()

    def test_fix(self, detected, checks, mocker):
        mocker.patch("zephyrus.cli.getuid", return_value=0)
        mocker.patch("zephyrus.cli.journal_text", return_value="")
        troubleshooter = mocker.patch("zephyrus.cli.Troubleshooter").return_value
        troubleshooter.fix.return_value = [CheckResult("initramfs", False, "mkinitcpio -P failed")]
        assert main(["troubleshoot", "--fix", "--force"]) == 1
        paths = troubleshooter.fix.call_args.args[0]
        assert "/etc/X11/xorg.conf.d/10-hybrid.conf" in paths
        assert "/etc/default/grub" in paths

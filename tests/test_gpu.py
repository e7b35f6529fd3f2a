"""
Tests for GPU mode switching and PRIME offload.
"""

import pytest

from zephyrus import gpu
from zephyrus.gpu import PRIME_OFFLOAD_ENV, offload_env, required_session_change


@pytest.mark.parametrize(
    "current, target, change",
    [
        ("hybrid", "hybrid", None),
        ("hybrid", "discrete", "reboot"),
        ("discrete", "integrated", "reboot"),
        ("integrated", "hybrid", "logout"),
        (None, "hybrid", "logout"),
    ],
)
def test_required_session_change(current, target, change):
    assert required_session_change(current, target) == change


class TestSwitch:
    def test_switch(self, mocker):
        mocker.patch("zephyrus.gpu.current_mode", return_value="hybrid")
        shell = mocker.patch("zephyrus.gpu.shell")
        assert gpu.switch("integrated") == "logout"
        shell.assert_called_once_with("supergfxctl -m Integrated")

    def test_switch_to_discrete(self, mocker):
        mocker.patch("zephyrus.gpu.current_mode", return_value="hybrid")
        shell = mocker.patch("zephyrus.gpu.shell")
        assert gpu.switch("discrete") == "reboot"
        shell.assert_called_once_with("supergfxctl -m AsusMuxDgpu")

    def test_already_active(self, mocker):
        mocker.patch("zephyrus.gpu.current_mode", return_value="hybrid")
        shell = mocker.patch("zephyrus.gpu.shell")
        assert gpu.switch("hybrid") is None
        shell.assert_not_called()

    def test_invalid_mode(self):
        with pytest.raises(AssertionError, match="invalid value"):
            gpu.switch("nvidia")


class TestMode:
    def test_current_mode(self, mocker):
        mocker.patch("zephyrus.gpu.command_exists", return_value=True)
        mocker.patch("zephyrus.gpu.shell_output", return_value="Integrated")
        assert gpu.current_mode() == "integrated"

    def test_without_supergfxctl(self, mocker):
        mocker.patch("zephyrus.gpu.command_exists", return_value=False)
        assert gpu.current_mode() is None

    def test_status(self, mocker):
        mocker.patch("zephyrus.gpu.current_mode", return_value="hybrid")
        mocker.patch("zephyrus.gpu.nvidia_power_state", return_value="OFF")
        mocker.patch("zephyrus.gpu.read_text", return_value="")
        assert gpu.status() == {"GPU mode": "hybrid", "dGPU power": "OFF", "bbswitch": "not loaded"}


class TestOffload:
    def test_env(self):
        env = offload_env({"PATH": "/usr/bin"})
        assert env["PATH"] == "/usr/bin"
        assert env["__NV_PRIME_RENDER_OFFLOAD"] == "1"
        assert env["__GLX_VENDOR_LIBRARY_NAME"] == "nvidia"

    def test_run(self, mocker):
        execvpe = mocker.patch("zephyrus.gpu.os.execvpe")
        gpu.run(["glxinfo", "-B"])
        command, argv, env = execvpe.call_args.args
        assert (command, argv) == ("glxinfo", ["glxinfo", "-B"])
        assert PRIME_OFFLOAD_ENV.items() <= env.items()

    def test_run_without_command(self):
        with pytest.raises(AssertionError):
            gpu.run([])

# tests/conftest.py
"""
Global pytest fixtures for zephyrus tests.
"""

from inspect import cleandoc

import pytest

from zephyrus.context import SystemContext
from zephyrus.distro import ARCH, FEDORA
from zephyrus.hardware import Hardware
from zephyrus.preferences import DEFAULT_PREFERENCES, Preferences


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Keep state stores and user configuration out of the real system."""
    monkeypatch.setenv("ZEPHYRUS_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("ZEPHYRUS_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("ZEPHYRUS_BACKUP_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("SUDO_USER", "tester")
    return tmp_path


@pytest.fixture
def lspci_output():
    """`lspci -nn` of a 2024 G14 with RTX 4070."""
    return cleandoc('''
        00:00.0 Host bridge [0600]: Advanced Micro Devices, Inc. [AMD] Device [1022:14e8]
        01:00.0 VGA compatible controller [0300]: NVIDIA Corporation AD106M [GeForce RTX 4070 Max-Q / Mobile] [10de:2860] (rev a1)
        01:00.1 Audio device [0403]: NVIDIA Corporation Device [10de:22bd] (rev a1)
        65:00.0 Display controller [0380]: Advanced Micro Devices, Inc. [AMD/ATI] Phoenix1 [1002:15bf] (rev c4)
    ''')


@pytest.fixture
def g14_hardware():
    return Hardware(
        laptop_model="ROG Zephyrus G14 GA403WR",
        cpu_model="AMD Ryzen 9 8945HS w/ Radeon 780M Graphics",
        amd_gpu="Advanced Micro Devices, Inc. [AMD/ATI] Phoenix1 [1002:15bf] (rev c4)",
        nvidia_gpu="NVIDIA Corporation AD106M [GeForce RTX 4070 Max-Q / Mobile] [10de:2860] (rev a1)",
        amd_bus_id="PCI:101:0:0",
        nvidia_bus_id="PCI:1:0:0",
        has_battery=True,
        amd_pstate_supported=True,
        bbswitch_supported=False,
    )


@pytest.fixture
def preferences():
    return Preferences.defaults()


@pytest.fixture
def make_context(g14_hardware, tmp_path):
    """Factory for system contexts with custom distribution or preferences."""

    def factory(distro=ARCH, preferences_text=DEFAULT_PREFERENCES, hardware=None):
        return SystemContext(
            distro=distro,
            hardware=hardware or g14_hardware,
            preferences=Preferences.parse(preferences_text),
            user="tester",
            templates_dir=tmp_path / "config" / "templates",
        )

    return factory


@pytest.fixture
def arch_context(make_context):
    return make_context()


@pytest.fixture
def fedora_context(make_context):
    return make_context(distro=FEDORA)


@pytest.fixture
def grub_defaults(tmp_path):
    path = tmp_path / "grub"
    path.write_text(cleandoc('''
        GRUB_DEFAULT=0
        GRUB_TIMEOUT=5
        GRUB_CMDLINE_LINUX_DEFAULT="loglevel=3 quiet"
        GRUB_CMDLINE_LINUX=""
    ''') + "\n")
    return path

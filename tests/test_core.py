"""
Tests for planning and execution of a setup run.
"""

import os
from pwd import getpwuid

import pytest

from zephyrus import *
from zephyrus.managers.hooks import position_in_install_order
from zephyrus.optimizer import CleanupOrderOptimizer
from zephyrus.utils.logging import logger


@pytest.fixture
def owner():
    return getpwuid(os.getuid()).pw_name


class TestInstallOrder:
    def test_requires_and_section_order(self, tmp_path, owner):
        first = File(str(tmp_path / "first"), content="1", owner=owner)
        second = File(str(tmp_path / "second"), content="2", owner=owner, requires=first)
        hook = PostHook("after-files", execute=lambda: None, trigger=lambda item: isinstance(item, File))
        setup = Setup(
            managers=[FileManager(), PostHookManager()],
            configs={
                Section("hooks"): hook,
                Section("second"): second,
                Section("first"): first,
            },
            require_root=False,
        )
        model = setup.create_model()
        assert position_in_install_order(model, first) < position_in_install_order(model, second)
        assert position_in_install_order(model, second) < position_in_install_order(model, hook)

    def test_same_manager_items_share_a_step(self, tmp_path, owner):
        files = [File(str(tmp_path / name), content=name, owner=owner) for name in ["a", "b", "c"]]
        setup = Setup(managers=[FileManager()], configs={Section("files"): files}, require_root=False)
        model = setup.create_model()
        assert len(model.steps) == 1
        assert model.steps[0].items_to_install == files

    def test_circular_dependency_is_reported(self, tmp_path, capsys):
        a = File(str(tmp_path / "a"), content="a", requires=File(str(tmp_path / "b")))
        b = File(str(tmp_path / "b"), content="b", requires=File(str(tmp_path / "a")))
        unrelated = File(str(tmp_path / "c"), content="c")
        setup = Setup(managers=[FileManager()], configs={Section("a"): a, Section("b"): b, Section("c"): unrelated}, require_root=False)
        with pytest.raises(SystemExit):
            setup.create_model()
        output = capsys.readouterr().out
        assert f"File('{tmp_path / 'a'}')" in output
        assert f"File('{tmp_path / 'c'}')" not in output

    def test_cleanup_order_follows_priorities(self):
        managers = ManagerPresets.fedora()
        order = [manager.__class__.__name__ for manager in CleanupOrderOptimizer(managers).calc_cleanup_order()]
        assert order.index("UserGroupManager") < order.index("FileManager") < order.index("DnfPackageManager")
        assert order[-1] == "PostHookManager"


class TestSetup:
    def test_requires_root(self, mocker):
        mocker.patch("zephyrus.core.getuid", return_value=1000)
        with pytest.raises(AssertionError, match="root"):
            Setup(managers=[], configs={})

    def test_item_without_manager(self, tmp_path):
        with pytest.raises(AssertionError, match="no manager found"):
            Setup(managers=[], configs={Section("x"): File(str(tmp_path / "x"), content="")}, require_root=False)

    def test_disabled_sections_are_ignored(self, tmp_path):
        setup = Setup(
            managers=[FileManager()],
            configs={Section("off", enabled=False): File(str(tmp_path / "x"), content="x")},
            require_root=False,
        )
        assert setup.create_model_unordered().items() == []

    def test_run_installs_and_cleans_up(self, tmp_path, owner):
        target = tmp_path / "etc" / "zephyrus.conf"
        item = File(str(target), content="managed\n", owner=owner)
        Setup(managers=[FileManager()], configs={Section("file"): item}, require_root=False).run(force=True)
        assert target.read_text() == "managed\n"

        Setup(managers=[FileManager()], configs={}, require_root=False).run(force=True)
        assert not target.exists()

    def test_nothing_to_do(self, tmp_path, owner, capsys):
        target = tmp_path / "zephyrus.conf"
        target.write_text("managed\n")
        target.chmod(0o644)
        item = File(str(target), content="managed\n", owner=owner)
        plan = Setup(managers=[FileManager()], configs={Section("file"): item}, require_root=False).plan()
        assert plan.expected_actions == []
        assert "already up to date" in capsys.readouterr().out

    def test_unexpected_action_needs_confirmation(self, tmp_path, owner, mocker):
        confirm = mocker.patch("zephyrus.core.confirm")
        item = File(str(tmp_path / "x"), content="x", owner=owner)
        setup = Setup(managers=[FileManager()], configs={Section("file"): item}, require_root=False)
        plan = setup.plan()
        plan.expected_actions = []
        setup.execute(plan)
        confirm.assert_called_once()


class TestVerbose:
    def test_planning_steps_are_logged(self, tmp_path, owner, mocker, capsys):
        mocker.patch.object(logger, "verbose", True)
        item = File(str(tmp_path / "x"), content="x", owner=owner)
        Setup(managers=[FileManager()], configs={Section("file"): item}, require_root=False).plan()
        output = capsys.readouterr().out
        assert f"planning: FileManager installs File('{tmp_path / 'x'}')" in output
        assert "planning: FileManager cleans up" in output

    def test_quiet_without_verbose(self, tmp_path, owner, mocker, capsys):
        mocker.patch.object(logger, "verbose", False)
        item = File(str(tmp_path / "x"), content="x", owner=owner)
        Setup(managers=[FileManager()], configs={Section("file"): item}, require_root=False).plan()
        assert "[DEBUG]" not in capsys.readouterr().out

    def test_context_details(self, arch_context, mocker, capsys):
        mocker.patch.object(logger, "verbose", True)
        arch_context.log_details()
        output = capsys.readouterr().out
        assert f"variant: {arch_context.variant.name}" in output
        assert "power manager: tlp" in output

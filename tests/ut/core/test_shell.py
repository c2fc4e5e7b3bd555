"""shell.py 命令执行器单元测试"""

from __future__ import annotations

import os
import sys

from nrpm.utils import shell
from nrpm.utils.shell import CommandResult, LocalExecutor, get_executor, set_executor


class TestLocalExecutor:
    def test_success(self, tmp_path) -> None:
        r = LocalExecutor().execute([sys.executable, "-c", "print('hello')"], cwd=str(tmp_path))
        assert r.success
        assert "hello" in r.stdout

    def test_failure_returns_code(self, tmp_path) -> None:
        r = LocalExecutor().execute(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"],
            cwd=str(tmp_path),
        )
        assert not r.success
        assert r.returncode == 3
        assert "boom" in r.stderr

    def test_env_passed(self, tmp_path) -> None:
        env = {**os.environ, "MY_TEST_VAR": "42"}
        r = LocalExecutor().execute(
            [sys.executable, "-c", "import os; print(os.environ['MY_TEST_VAR'])"],
            cwd=str(tmp_path), env=env,
        )
        assert r.stdout.strip() == "42"


class TestDefaultExecutor:
    def test_set_and_get(self, monkeypatch) -> None:
        class Recorder:
            def execute(self, cmd, *, cwd=None, env=None):
                return CommandResult(0, " ".join(cmd), "")

        monkeypatch.setattr(shell, "_default_executor", shell._default_executor)
        fake = Recorder()
        set_executor(fake)
        assert get_executor() is fake

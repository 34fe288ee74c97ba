"""Command line tests."""

import json

import pytest

from wrangler_preview import cli
from wrangler_preview.errors import ConfigError, UpstreamApiError
from wrangler_preview.selector import WorkerScript
from wrangler_preview.wrangler import DeployResult

WRANGLER_TOML = '[env.preview]\nname = "placeholder"\n'


@pytest.fixture
def gh(tmp_path, monkeypatch):
    """Actions files and a pull_request event."""
    for var in ("CLOUDFLARE_API_TOKEN", "CLOUDFLARE_ACCOUNT_ID", "DRY_RUN", "WORKER_SECRETS"):
        monkeypatch.delenv(var, raising=False)
    event = tmp_path / "event.json"
    event.write_text(json.dumps({"pull_request": {"number": 7, "head": {"ref": "feature/x"}}}), encoding="utf-8")
    output = tmp_path / "output"
    summary = tmp_path / "summary.md"
    environ = {
        "GITHUB_EVENT_NAME": "pull_request",
        "GITHUB_REF": "refs/pull/7/merge",
        "GITHUB_SHA": "0123456789abcdef",
        "GITHUB_REPOSITORY": "acme/app",
        "GITHUB_EVENT_PATH": str(event),
    }
    return {
        "environ": environ,
        "output": output,
        "summary": summary,
        "args": ["--github-output", str(output), "--step-summary", str(summary)],
    }


def read_outputs(path):
    outputs = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        if "=" in line and "<<" not in line:
            key, value = line.split("=", 1)
            outputs[key] = value
    return outputs


class FakeApi:
    instances = []

    def __init__(self, api_token, account_id, **kwargs):
        self.account_id = account_id
        self.deleted = []
        self.fail = set()
        FakeApi.instances.append(self)

    def list_workers(self):
        return [WorkerScript("preview-1"), WorkerScript("preview-2"), WorkerScript("prod")]

    def worker_exists(self, name):
        return True

    def delete_worker(self, name):
        if name in self.fail:
            raise UpstreamApiError("Permission denied", status_code=403)
        self.deleted.append(name)


class TestParseMapping:
    def test_json(self):
        assert cli.parse_mapping('{"A": "1", "B": 2}', "secrets") == {"A": "1", "B": "2"}

    def test_yaml(self):
        assert cli.parse_mapping("A: one\nB: two\n", "vars") == {"A": "one", "B": "two"}

    def test_empty(self):
        assert cli.parse_mapping("", "vars") == {}
        assert cli.parse_mapping(None, "vars") == {}

    @pytest.mark.parametrize("text", ["[1, 2]", "just a string", "A: {nested: 1}", "{a: [unclosed"])
    def test_rejected(self, text):
        with pytest.raises(ConfigError):
            cli.parse_mapping(text, "secrets")


class TestPrepare:
    def test_outputs(self, gh, tmp_path):
        toml = tmp_path / "wrangler.toml"
        toml.write_text(WRANGLER_TOML, encoding="utf-8")
        code = cli.main(
            gh["args"]
            + ["prepare", "--worker-name", "app-pr-{pr-number}", "--environment", "preview"]
            + ["--wrangler-toml-path", str(toml)],
            environ=gh["environ"],
        )
        assert code == 0
        assert read_outputs(gh["output"]) == {
            "deployment-name": "app-pr-7",
            "deployment-url": "https://app-pr-7.workers.dev",
        }
        assert 'name = "app-pr-7"' in toml.read_text(encoding="utf-8")

    def test_missing_section_fails(self, gh, tmp_path):
        toml = tmp_path / "wrangler.toml"
        toml.write_text('name = "x"\n', encoding="utf-8")
        code = cli.main(
            gh["args"]
            + ["prepare", "--worker-name", "app-{pr-number}", "--environment", "preview"]
            + ["--wrangler-toml-path", str(toml)],
            environ=gh["environ"],
        )
        assert code == 1
        assert read_outputs(gh["output"]) == {"deployment-name": "", "deployment-url": ""}
        assert "Prepare Preview Deploy Failed" in gh["summary"].read_text(encoding="utf-8")


class TestSetup:
    def test_vars_and_routes(self, gh, tmp_path):
        toml = tmp_path / "wrangler.toml"
        toml.write_text(WRANGLER_TOML, encoding="utf-8")
        code = cli.main(
            gh["args"]
            + ["setup", "--wrangler-toml-path", str(toml), "--environment-name", "preview"]
            + ["--worker-name", "app-pr-7", "--no-backup", "--vars", "API: https://x", "--routes", "a.example.com/*"],
            environ=gh["environ"],
        )
        assert code == 0
        content = toml.read_text(encoding="utf-8")
        assert 'name = "app-pr-7"' in content
        assert 'API = "https://x"' in content
        assert 'pattern = "a.example.com/*"' in content
        assert read_outputs(gh["output"]) == {"updated": "true"}


class TestDeploy:
    def test_requires_credentials(self, gh):
        code = cli.main(gh["args"] + ["deploy", "--environment", "preview"], environ=gh["environ"])
        assert code == 1
        outputs = read_outputs(gh["output"])
        assert outputs["success"] == "false"
        assert "API_TOKEN" in outputs["error-message"]

    def test_success(self, gh, tmp_path, monkeypatch):
        toml = tmp_path / "wrangler.toml"
        toml.write_text(WRANGLER_TOML, encoding="utf-8")
        calls = []

        class FakeClient:
            def __init__(self, api_token, account_id, **kwargs):
                pass

            def check_available(self):
                return True

            def deploy_worker(self, worker_name, environment="production", *, secrets=None, deploy_command="deploy"):
                calls.append((worker_name, environment, secrets))
                return DeployResult(success=True, worker_name=worker_name, output="")

        monkeypatch.setattr(cli, "WranglerClient", FakeClient)
        code = cli.main(
            gh["args"]
            + ["deploy", "--environment", "preview", "--worker-name-pattern", "app-pr-{pr_number}"]
            + ["--wrangler-file", str(toml), "--secrets", '{"KEY": "v"}']
            + ["--api-token", "tok", "--account-id", "acc"],
            environ=gh["environ"],
        )
        assert code == 0
        assert calls == [("app-pr-7", "preview", {"KEY": "v"})]
        assert read_outputs(gh["output"]) == {
            "worker-url": "https://app-pr-7.workers.dev",
            "worker-name": "app-pr-7",
            "success": "true",
        }
        assert toml.read_text(encoding="utf-8") == WRANGLER_TOML

    def test_wrangler_missing(self, gh, monkeypatch):
        monkeypatch.setattr("wrangler_preview.wrangler.shutil.which", lambda name: None)
        code = cli.main(
            gh["args"]
            + ["deploy", "--environment", "preview", "--worker-name", "w", "--wrangler-command", "no-such-wrangler"]
            + ["--api-token", "tok", "--account-id", "acc"],
            environ=gh["environ"],
        )
        assert code == 1
        outputs = read_outputs(gh["output"])
        assert outputs["success"] == "false"
        assert "wrangler is not available: no-such-wrangler" in outputs["error-message"]


class TestCleanup:
    """cleanup sub-command against a fake API."""

    @pytest.fixture(autouse=True)
    def fake_api(self, monkeypatch):
        FakeApi.instances = []
        monkeypatch.setattr(cli, "CloudflareApi", FakeApi)

    def test_pr_linked_from_event(self, gh):
        code = cli.main(
            gh["args"] + ["cleanup", "--api-token", "t", "--account-id", "a", "--delay", "0"],
            environ=gh["environ"],
        )
        assert code == 0
        assert FakeApi.instances[0].deleted == ["preview-7"]
        outputs = read_outputs(gh["output"])
        assert json.loads(outputs["deleted-workers"]) == ["preview-7"]
        assert outputs["deleted-count"] == "1"

    def test_credentials_from_environment(self, gh, monkeypatch):
        monkeypatch.setenv("CLOUDFLARE_API_TOKEN", "t")
        monkeypatch.setenv("CLOUDFLARE_ACCOUNT_ID", "a")
        code = cli.main(gh["args"] + ["cleanup", "--delay", "0"], environ=gh["environ"])
        assert code == 0

    def test_batch_dry_run(self, gh):
        code = cli.main(
            gh["args"]
            + ["cleanup", "--mode", "batch", "--batch-pattern", "preview-*", "--exclude", "preview-2", "--dry-run"]
            + ["--api-token", "t", "--account-id", "a"],
            environ=gh["environ"],
        )
        assert code == 0
        assert FakeApi.instances[0].deleted == []
        outputs = read_outputs(gh["output"])
        assert json.loads(outputs["dry-run-results"]) == ["preview-1"]
        assert outputs["deleted-count"] == "0"
        assert "Dry Run" in gh["summary"].read_text(encoding="utf-8")

    def test_failed_deletion_exits_1(self, gh, monkeypatch):
        original_init = FakeApi.__init__

        def init(self, *args, **kwargs):
            original_init(self, *args, **kwargs)
            self.fail = {"preview-2"}

        monkeypatch.setattr(FakeApi, "__init__", init)
        code = cli.main(
            gh["args"]
            + ["cleanup", "--mode", "manual", "--worker-names", "preview-1,preview-2", "--delay", "0"]
            + ["--api-token", "t", "--account-id", "a"],
            environ=gh["environ"],
        )
        assert code == 1
        assert "preview-2: Permission denied" in gh["summary"].read_text(encoding="utf-8")

    def test_invalid_mode_parameters(self, gh):
        code = cli.main(
            gh["args"] + ["cleanup", "--mode", "batch", "--api-token", "t", "--account-id", "a"],
            environ=gh["environ"],
        )
        assert code == 1
        outputs = read_outputs(gh["output"])
        assert outputs["deleted-count"] == "0"
        assert "Batch pattern is required" in gh["summary"].read_text(encoding="utf-8")

    @pytest.mark.parametrize("days", ["nan", "inf"])
    def test_non_finite_max_age(self, gh, days):
        code = cli.main(
            gh["args"] + ["cleanup", "--mode", "batch-by-age", "--max-age-days", days]
            + ["--api-token", "t", "--account-id", "a"],
            environ=gh["environ"],
        )
        assert code == 1
        assert read_outputs(gh["output"])["deleted-count"] == "0"
        assert "max-age-days must be a positive number" in gh["summary"].read_text(encoding="utf-8")

    def test_nothing_to_clean(self, gh):
        code = cli.main(
            gh["args"] + ["cleanup", "--mode", "batch", "--batch-pattern", "none-*"]
            + ["--api-token", "t", "--account-id", "a"],
            environ=gh["environ"],
        )
        assert code == 0
        assert read_outputs(gh["output"])["deleted-workers"] == "[]"
        assert not gh["summary"].exists()


class TestComment:
    def test_body_and_existing_comment(self, gh, tmp_path):
        comments = tmp_path / "comments.json"
        comments.write_text(
            json.dumps([{"id": 99, "user": {"login": "github-actions[bot]"}, "body": "## 🚀 Preview Deployment"}]),
            encoding="utf-8",
        )
        body_file = tmp_path / "body.md"
        code = cli.main(
            gh["args"]
            + ["comment", "--worker-url", "https://app-pr-7.workers.dev", "--worker-name", "app-pr-7"]
            + ["--existing-comments", str(comments), "--output", str(body_file)],
            environ=gh["environ"],
        )
        assert code == 0
        body = body_file.read_text(encoding="utf-8")
        assert "**Worker Name:** `app-pr-7`" in body
        assert "**Commit:** 0123456" in body
        assert "**Branch:** `feature/x`" in body
        assert read_outputs(gh["output"])["comment-id"] == "99"

    def test_to_stdout(self, gh, capsys):
        code = cli.main(
            gh["args"] + ["comment", "--worker-url", "", "--deployment-status", "failure"],
            environ=gh["environ"],
        )
        assert code == 0
        assert "https://github.com/acme/app/actions" in capsys.readouterr().out

    def test_bad_comments_file(self, gh, tmp_path):
        code = cli.main(
            gh["args"] + ["comment", "--worker-url", "u", "--existing-comments", str(tmp_path / "missing.json")],
            environ=gh["environ"],
        )
        assert code == 1

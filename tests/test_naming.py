"""Worker name templating tests."""

import re

import pytest

from wrangler_preview.errors import ConfigError, InvalidTemplate, MissingContext
from wrangler_preview.naming import (
    MAX_WORKER_NAME_LENGTH,
    coerce_pr_number,
    generate_worker_name,
    generate_worker_url,
    pr_number_from_event,
    process_template,
    sanitize_branch_name,
    sanitize_worker_name,
)

DNS_LABEL = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")

BRANCHES = [
    "main",
    "feature/add-login",
    "Feature/UPPER_case",
    "fix//double--slash",
    "-leading-and-trailing-",
    "release/v1.2.3",
    "dependabot/npm_and_yarn/lodash-4.17.21",
    "a" * 100,
    "x/" + "y-" * 40,
    "ünïcödé/bränch",
]


class TestProcessTemplate:
    """Fallback substitution policy."""

    def test_pr_number_substituted(self):
        """Test {pr-number} becomes the PR number."""
        assert process_template("my-app-pr-{pr-number}", "42", "feature-x") == "my-app-pr-42"

    def test_falls_back_to_branch(self):
        """Test {pr-number} becomes the branch name without a PR."""
        assert process_template("my-app-{pr-number}", None, "feature-x") == "my-app-feature-x"

    def test_branch_name_substituted(self):
        """Test {branch-name} becomes the branch name."""
        assert process_template("app-{branch-name}-{pr-number}", "7", "dev") == "app-dev-7"

    def test_invalid_characters_dropped(self):
        """Test characters outside [A-Za-z0-9-] are removed, template text included."""
        assert process_template("My_App.{pr-number}", "3", "x") == "MyApp3"

    def test_placeholder_never_left(self):
        """Test the literal placeholder never survives when a PR number is set."""
        for template in ("{pr-number}", "a-{pr-number}-{pr-number}", "x{pr-number}y"):
            assert "{pr-number}" not in process_template(template, "12", "main")

    def test_backslash_in_branch_is_literal(self):
        """Test branch names are not read as regex replacement templates."""
        assert process_template("{branch-name}", None, r"a\1b") == "a1b"

    def test_empty_template(self):
        """Test an empty template is rejected."""
        with pytest.raises(InvalidTemplate):
            process_template("", "1", "main")

    def test_empty_result(self):
        """Test a template that sanitizes to nothing is rejected."""
        with pytest.raises(InvalidTemplate):
            process_template("___", "1", "main")


class TestGenerateWorkerName:
    """Optional-removal substitution policy."""

    def test_pr_number(self):
        """Test {pr_number} is substituted."""
        assert generate_worker_name("my-app-pr-{pr_number}", 123) == "my-app-pr-123"

    def test_pr_number_removed_with_hyphen(self):
        """Test {pr_number} and its leading hyphen disappear without a PR."""
        assert generate_worker_name("my-app-{pr_number}", None, "main") == "my-app"

    def test_branch_placeholder(self):
        """Test {branch} becomes the branch with slashes turned into hyphens."""
        assert generate_worker_name("app-{branch}", branch="feature/Login") == "app-feature-login"

    def test_star_is_branch(self):
        """Test a bare * is replaced by the branch."""
        assert generate_worker_name("app-*", branch="dev") == "app-dev"

    def test_star_removed_without_branch(self):
        """Test * is dropped when there is no branch."""
        assert generate_worker_name("app-*") == "app"

    def test_require_pr_number(self):
        """Test a mandatory PR number raises MissingContext."""
        with pytest.raises(MissingContext):
            generate_worker_name("app-{pr_number}", None, require_pr_number=True)

    def test_empty_pattern(self):
        """Test an empty pattern is rejected."""
        with pytest.raises(InvalidTemplate):
            generate_worker_name("")

    def test_empty_result(self):
        """Test a pattern that renders to nothing is rejected."""
        with pytest.raises(InvalidTemplate):
            generate_worker_name("{pr_number}")

    @pytest.mark.parametrize("branch", BRANCHES)
    def test_branch_names_are_dns_labels(self, branch):
        """Test every rendered branch name is a valid worker name."""
        name = generate_worker_name("{branch}", branch=branch)
        assert len(name) <= MAX_WORKER_NAME_LENGTH
        assert DNS_LABEL.match(name)


class TestSanitize:
    """Name and branch sanitizing."""

    def test_collapse_and_trim(self):
        """Test runs of hyphens collapse and edges are trimmed."""
        assert sanitize_worker_name("--My__App--") == "my-app"

    def test_truncate_does_not_end_in_hyphen(self):
        """Test truncation at 63 characters never leaves a trailing hyphen."""
        name = sanitize_worker_name("a" * 62 + "-bcd")
        assert name == "a" * 62

    def test_branch(self):
        """Test branch sanitizing keeps case and drops punctuation."""
        assert sanitize_branch_name("feature/Add_Login.v2") == "feature-AddLoginv2"


class TestWorkerUrl:
    def test_with_subdomain(self):
        assert generate_worker_url("app", "acme") == "https://app.acme.workers.dev"

    def test_without_subdomain(self):
        assert generate_worker_url("app") == "https://app.workers.dev"

    def test_requires_name(self):
        with pytest.raises(InvalidTemplate):
            generate_worker_url("")


class TestPrNumber:
    """PR number discovery from workflow events."""

    def test_pull_request(self):
        """Test the pull_request payload number."""
        assert pr_number_from_event("pull_request", {"pull_request": {"number": 9}}) == 9

    def test_issue_comment_on_pr(self):
        """Test comments on a pull request."""
        payload = {"issue": {"number": 5, "pull_request": {"url": "..."}}}
        assert pr_number_from_event("issue_comment", payload) == 5

    def test_issue_comment_on_issue(self):
        """Test comments on a plain issue have no PR number."""
        assert pr_number_from_event("issue_comment", {"issue": {"number": 5}}) is None

    def test_pull_ref(self):
        """Test refs/pull/<n>/merge refs."""
        assert pr_number_from_event("workflow_run", {}, "refs/pull/77/merge") == 77

    def test_push(self):
        """Test pushes have no PR number."""
        assert pr_number_from_event("push", {}, "refs/heads/main") is None

    @pytest.mark.parametrize("value,expected", [(None, None), ("", None), ("0", None), ("12", 12), (4, 4)])
    def test_coerce(self, value, expected):
        assert coerce_pr_number(value) == expected

    def test_coerce_rejects_text(self):
        with pytest.raises(ConfigError):
            coerce_pr_number("abc")

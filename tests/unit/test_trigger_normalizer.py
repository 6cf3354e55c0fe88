"""Unit tests for push payload normalization."""

from typing import Any

from gitsync.schemas.trigger import TriggerSource
from gitsync.services.trigger_normalizer import branch_from_ref, detect_provider, parse_trigger


class TestBranchFromRef:
    def test_strips_heads_prefix(self) -> None:
        assert branch_from_ref("refs/heads/feature/x") == "feature/x"

    def test_other_refs_pass_through(self) -> None:
        assert branch_from_ref("refs/tags/v1.0.0") == "refs/tags/v1.0.0"

    def test_non_string_is_empty(self) -> None:
        assert branch_from_ref(None) == ""


class TestGitHub:
    """Tests for GitHub push deliveries."""

    def test_minimal_push(self) -> None:
        trigger = parse_trigger(
            "github",
            {"ref": "refs/heads/main", "repository": {"name": "x"}, "pusher": {"name": "a"}},
        )

        assert trigger is not None
        assert trigger.provider == TriggerSource.GITHUB
        assert trigger.branch == "main"
        assert trigger.repository == "x"
        assert trigger.pusher == "a"
        assert trigger.full_name is None
        assert trigger.commits == 0

    def test_full_push(self, github_push_payload: dict[str, Any]) -> None:
        trigger = parse_trigger("github", github_push_payload, "push")

        assert trigger is not None
        assert trigger.full_name == "acme/my-app"
        assert trigger.commits == 1
        assert trigger.head_commit == "b" * 40

    def test_head_commit_falls_back_to_after(self) -> None:
        trigger = parse_trigger("github", {"ref": "refs/heads/main", "after": "c0ffee"})
        assert trigger is not None
        assert trigger.head_commit == "c0ffee"

    def test_ping_event_is_ignored(self) -> None:
        assert parse_trigger("github", {"zen": "Keep it simple", "hook_id": 1}, "ping") is None

    def test_tag_push_keeps_ref(self) -> None:
        trigger = parse_trigger("github", {"ref": "refs/tags/v2", "repository": {"name": "x"}})
        assert trigger is not None
        assert trigger.branch == "refs/tags/v2"

    def test_malformed_fields_do_not_raise(self) -> None:
        trigger = parse_trigger(
            "github",
            {"ref": "refs/heads/main", "repository": "oops", "pusher": [], "commits": "many"},
            "push",
        )
        assert trigger is not None
        assert trigger.repository is None
        assert trigger.pusher is None
        assert trigger.commits == 0

    def test_non_mapping_body_is_ignored(self) -> None:
        assert parse_trigger("github", ["not", "a", "push"], "push") is None


class TestGitLab:
    def test_push_hook(self) -> None:
        trigger = parse_trigger(
            TriggerSource.GITLAB,
            {
                "object_kind": "push",
                "ref": "refs/heads/develop",
                "checkout_sha": "abc123",
                "user_name": "Jane",
                "total_commits_count": 3,
                "project": {"name": "api", "path_with_namespace": "group/api"},
            },
        )

        assert trigger is not None
        assert trigger.provider == TriggerSource.GITLAB
        assert trigger.branch == "develop"
        assert trigger.repository == "api"
        assert trigger.full_name == "group/api"
        assert trigger.pusher == "Jane"
        assert trigger.commits == 3
        assert trigger.head_commit == "abc123"

    def test_missing_object_kind_and_ref_is_ignored(self) -> None:
        assert parse_trigger("gitlab", {"project": {"name": "api"}}) is None


class TestGitea:
    def test_push(self) -> None:
        trigger = parse_trigger(
            "gitea",
            {
                "ref": "refs/heads/main",
                "after": "deadbeef",
                "repository": {"name": "site", "full_name": "me/site"},
                "pusher": {"login": "me"},
                "commits": [{}, {}],
            },
            "push",
        )

        assert trigger is not None
        assert trigger.provider == TriggerSource.GITEA
        assert trigger.pusher == "me"
        assert trigger.commits == 2
        assert trigger.head_commit == "deadbeef"


class TestDetectProvider:
    def test_gitea_wins_over_github_compat_header(self) -> None:
        headers = {"X-Gitea-Event": "push", "X-GitHub-Event": "push"}
        assert detect_provider(headers) == TriggerSource.GITEA

    def test_gitlab_token(self) -> None:
        assert detect_provider({"X-Gitlab-Token": "t"}) == TriggerSource.GITLAB

    def test_github_event(self) -> None:
        assert detect_provider({"x-github-event": "push"}) == TriggerSource.GITHUB

    def test_unknown(self) -> None:
        assert detect_provider({"Content-Type": "application/json"}) is None

from __future__ import annotations

from relforge.core.errors import ErrorCode
from relforge.output.console import MockConsole
from relforge.output.errors import print_release_failure, release_exit_code
from relforge.services.release.errors import (
    ConfigError,
    DiscoveryError,
    PlanError,
    PublishError,
    TagConflictError,
    TemplateError,
)


def test_exit_codes() -> None:
    assert release_exit_code(ConfigError(message="x")) == ErrorCode.USER_ERROR
    assert release_exit_code(TemplateError(template="{X}", message="x")) == ErrorCode.USER_ERROR
    assert release_exit_code(PlanError(message="x")) == ErrorCode.USER_ERROR
    assert release_exit_code(DiscoveryError(message="x")) == ErrorCode.IO_ERROR
    assert release_exit_code(TagConflictError(tag="v1", message="x")) == ErrorCode.PUBLISH_ERROR
    assert release_exit_code(PublishError(kind="probe", message="x")) == ErrorCode.NETWORK_ERROR
    assert release_exit_code(PublishError(kind="nuget", message="x")) == ErrorCode.PUBLISH_ERROR


def test_print_config_error_with_hint() -> None:
    console = MockConsole()
    print_release_failure(ConfigError(message="bad key", hint="fix it"), console)
    assert console.has_error()
    assert console.find("config: bad key")
    assert console.find("hint: fix it")


def test_print_template_error_lists_tokens() -> None:
    console = MockConsole()
    error = TemplateError(template="v{Versoin}", message="unknown token {Versoin}", token="Versoin")
    print_release_failure(error, console)
    assert console.has_error()
    assert console.find("unknown token")
    assert console.find("{Version}")


def test_print_tag_conflict() -> None:
    console = MockConsole()
    print_release_failure(TagConflictError(tag="v1", message="tag already exists: v1"), console)
    assert console.has_error()
    assert console.find("tag already exists: v1")
    assert console.find("delete v1")

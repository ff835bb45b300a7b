"""
AwsIamService: IamService backed by boto3 (IAM + STS).

Errors from botocore are translated into RemoteCallFailed. Throttling,
5xx and transport errors are flagged retryable; the reconciler owns the
retry loop, so botocore's own retries are turned off.

The configured IAM path is stamped on created users and groups only.
Listings cover every path: IAM names are unique account-wide, so an
entity outside the path still has to be observed.

Usage:
    svc = AwsIamService.from_session(region="us-east-1", profile="ops", timeout_sec=30)
    svc.account_id()
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import RemoteCallFailed
from .models import ObservedUser, Secret
from .service import generate_password

log = logging.getLogger(__name__)

RETRYABLE_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "ServiceFailure",
    "ServiceUnavailable",
    "InternalFailure",
})


def _tags_to_list(tags: Mapping[str, str]) -> List[Dict[str, str]]:
    return [{"Key": k, "Value": v} for k, v in sorted(tags.items())]


def _translate(method: str, resource: str, exc: Exception) -> RemoteCallFailed:
    if isinstance(exc, ClientError):
        err = exc.response.get("Error", {})
        code = str(err.get("Code", ""))
        status = int(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)
        retryable = code in RETRYABLE_CODES or status >= 500
        return RemoteCallFailed(method, resource, f"{code}: {err.get('Message', '')}".strip(),
                                retryable=retryable, code=code)
    return RemoteCallFailed(method, resource, str(exc), retryable=True, code=type(exc).__name__)


def _remote(method: str, resource_arg: Optional[int] = 0) -> Callable:
    """Wrap a service method so botocore errors surface as RemoteCallFailed."""
    def deco(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(self, *args: Any, **kwargs: Any) -> Any:
            resource = str(args[resource_arg]) if resource_arg is not None and args else "*"
            try:
                return fn(self, *args, **kwargs)
            except (ClientError, BotoCoreError) as exc:
                err = _translate(method, resource, exc)
                log.warning("IAM %s(%s) failed: %s", method, resource, err.message)
                raise err from exc
        return wrapper
    return deco


class AwsIamService:
    """AWS IAM account as an IamService."""

    def __init__(
        self,
        iam_client: Any,
        sts_client: Any,
        *,
        path: str = "/",
        password_reset_required: bool = True,
    ) -> None:
        self.iam = iam_client
        self.sts = sts_client
        self.path = path or "/"
        self.password_reset_required = password_reset_required
        self._account: Optional[str] = None

    @classmethod
    def from_session(
        cls,
        *,
        region: str = "",
        profile: str = "",
        timeout_sec: float = 30.0,
        path: str = "/",
        password_reset_required: bool = True,
    ) -> "AwsIamService":
        session = boto3.Session(profile_name=profile or None, region_name=region or None)
        cfg = Config(
            connect_timeout=timeout_sec,
            read_timeout=timeout_sec,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )
        return cls(
            session.client("iam", config=cfg),
            session.client("sts", config=cfg),
            path=path,
            password_reset_required=password_reset_required,
        )

    # ------------- reads -------------

    @_remote("account_id", None)
    def account_id(self) -> str:
        if self._account is None:
            self._account = str(self.sts.get_caller_identity()["Account"])
        return self._account

    def _user_tags(self, name: str) -> Dict[str, str]:
        tags: Dict[str, str] = {}
        kwargs: Dict[str, Any] = {"UserName": name}
        while True:
            resp = self.iam.list_user_tags(**kwargs)
            for t in resp.get("Tags", []):
                tags[t["Key"]] = t["Value"]
            if not resp.get("IsTruncated"):
                return tags
            kwargs["Marker"] = resp["Marker"]

    def _has_login_profile(self, name: str) -> bool:
        try:
            self.iam.get_login_profile(UserName=name)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "NoSuchEntity":
                return False
            raise
        return True

    @_remote("list_users", None)
    def list_users(self) -> Dict[str, ObservedUser]:
        out: Dict[str, ObservedUser] = {}
        for page in self.iam.get_paginator("list_users").paginate():
            for u in page.get("Users", []):
                name = u["UserName"]
                out[name] = ObservedUser(
                    key=name,
                    tags=self._user_tags(name),
                    console_access=self._has_login_profile(name),
                )
        log.debug("Listed %d IAM user(s)", len(out))
        return out

    def _group_members(self, group: str) -> FrozenSet[str]:
        members = set()
        for page in self.iam.get_paginator("get_group").paginate(GroupName=group):
            for u in page.get("Users", []):
                members.add(u["UserName"])
        return frozenset(members)

    @_remote("list_group_memberships", None)
    def list_group_memberships(self) -> Dict[str, FrozenSet[str]]:
        out: Dict[str, FrozenSet[str]] = {}
        for page in self.iam.get_paginator("list_groups").paginate():
            for g in page.get("Groups", []):
                out[g["GroupName"]] = self._group_members(g["GroupName"])
        return out

    # ------------- writes -------------

    @_remote("create_group")
    def create_group(self, name: str) -> None:
        self.iam.create_group(GroupName=name, Path=self.path)

    @_remote("create_user")
    def create_user(self, key: str, tags: Mapping[str, str]) -> None:
        self.iam.create_user(UserName=key, Path=self.path, Tags=_tags_to_list(tags))

    @_remote("update_user_tags")
    def update_user_tags(self, key: str, tags: Mapping[str, str]) -> None:
        self.iam.tag_user(UserName=key, Tags=_tags_to_list(tags))

    @_remote("enable_console_access")
    def enable_console_access(self, key: str) -> Secret:
        password = generate_password()
        self.iam.create_login_profile(
            UserName=key,
            Password=password.reveal(),
            PasswordResetRequired=self.password_reset_required,
        )
        return password

    @_remote("set_group_membership")
    def set_group_membership(self, group: str, member_keys: Iterable[str]) -> None:
        wanted = set(member_keys)
        current = set(self._group_members(group))
        for key in sorted(wanted - current):
            self.iam.add_user_to_group(GroupName=group, UserName=key)
        for key in sorted(current - wanted):
            self.iam.remove_user_from_group(GroupName=group, UserName=key)

import json

from pydantic import BaseModel, Field, ValidationError

from pushscan.errors import PayloadError

PUSH_EVENT = "push"
BRANCH_REF_PREFIX = "refs/heads/"


class Owner(BaseModel):
    login: str = ""
    name: str = ""


class Repository(BaseModel):
    name: str = ""
    full_name: str = ""
    owner: Owner = Field(default_factory=Owner)
    default_branch: str = ""
    clone_url: str = ""

    @property
    def owner_login(self) -> str:
        # push payloads carry the owner's login under "name" as well
        return self.owner.login or self.owner.name


class Commit(BaseModel):
    id: str = ""


class Installation(BaseModel):
    id: int = 0


class PushEvent(BaseModel):
    ref: str = ""
    repository: Repository = Field(default_factory=Repository)
    commits: list[Commit] = Field(default_factory=list)
    installation: Installation = Field(default_factory=Installation)


def parse_push_event(payload: bytes) -> PushEvent:
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PayloadError(f"failed to unmarshal push event: {e}") from e
    if not isinstance(data, dict):
        raise PayloadError("failed to unmarshal push event: payload is not an object")
    try:
        return PushEvent.model_validate(data)
    except ValidationError as e:
        raise PayloadError(f"failed to unmarshal push event: {e}") from e


def pushed_branch(event: PushEvent) -> str:
    return event.ref.removeprefix(BRANCH_REF_PREFIX)


def is_eligible_for_commit_scan(event: PushEvent) -> bool:
    return len(event.commits) > 0 and event.ref.startswith(BRANCH_REF_PREFIX)


def is_eligible_for_full_scan(event: PushEvent) -> bool:
    # exact match: "Main" and "main" are different branches
    return is_eligible_for_commit_scan(event) and pushed_branch(event) == event.repository.default_branch

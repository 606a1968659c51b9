"""
Grouping Domain Service.

Automatic camper grouping with three limits taken from the camp: campers per
group, number of groups and grade spread inside a group.

1. Friend requests are matched by name against the roster; campers linked by
   requests (directly or through a chain) form one friend cluster.
2. Clusters are placed whole into the best group that still fits: one below
   the even-split target size, then one that already has campers, then the
   smallest grade-spread increase, then the emptiest.
3. Everyone else follows in grade order, same rule.
4. Whoever cannot be placed stays ungrouped and is reported.

Finalizing freezes the groups until a director unfinalizes them.
"""

import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from rest_api.models import Athlete, Camp, CampGroup, CamperSessionData
from rest_api.models.base import utcnow
from shared.config.constants import AssignmentType, GroupingStatus
from shared.config.logging import camp_ops_logger as logger
from shared.infrastructure.db import safe_commit
from shared.utils.exceptions import InvalidStateError, NotFoundError, ValidationError

from .camp_day_service import CAMP_LOCKED_MESSAGE

GROUPING_FINALIZED_MESSAGE = "Grouping has been finalized. Unfinalize to make changes."

DEFAULT_GROUP_NAMES = [
    "Team Blaze",
    "Team Thunder",
    "Team Lightning",
    "Team Storm",
    "Team Phoenix",
    "Team Falcon",
    "Team Wolves",
    "Team Panthers",
]
DEFAULT_GROUP_COLORS = [
    "#FF6B6B",
    "#4ECDC4",
    "#FFE66D",
    "#95E1D3",
    "#F38181",
    "#AA96DA",
    "#FCBAD3",
    "#A8D8EA",
]

_WORD_GRADES = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5, "sixth": 6,
    "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10, "eleventh": 11, "twelfth": 12,
}
_PRE_K = re.compile(r"pre-?k|pre-?kindergarten|pk|preschool")
_NUMERIC_GRADE = re.compile(r"(\d+)(?:st|nd|rd|th)?(?:\s*grade)?")


# =============================================================================
# Parsing and matching
# =============================================================================


def parse_grade(value: str | None) -> int | None:
    """
    School grade as a number: -1 for pre-K, 0 for kindergarten, 1-12.

        parse_grade("3rd grade") -> 3
        parse_grade("K")         -> 0
        parse_grade("college")   -> None
    """
    if not value or not value.strip():
        return None
    text = value.strip().lower()
    if _PRE_K.fullmatch(text):
        return -1
    if text in ("kindergarten", "kinder", "k"):
        return 0
    match = _NUMERIC_GRADE.fullmatch(text)
    if match:
        grade = int(match.group(1))
        return grade if 1 <= grade <= 12 else None
    for word, grade in _WORD_GRADES.items():
        if word in text:
            return grade
    return None


def normalize_name(name: str) -> str:
    letters = re.sub(r"[^a-z\s]", "", name.lower())
    return re.sub(r"\s+", " ", letters).strip()


def parse_friend_requests(raw: str | None) -> list[str]:
    if not raw:
        return []
    names = (normalize_name(part) for part in re.split(r"[,;\n]+", raw))
    return [name for name in names if name]


def match_friend(name: str, roster: Iterable[tuple[int, str, str]]) -> int | None:
    """
    Athlete id for a requested friend name, trying in order: full name,
    first plus last name, a unique first name, then containment either way.
    `roster` holds (athlete_id, first_name, last_name).
    """
    wanted = normalize_name(name)
    if not wanted:
        return None
    entries = [
        (athlete_id, normalize_name(first), normalize_name(last))
        for athlete_id, first, last in roster
    ]

    for athlete_id, first, last in entries:
        if f"{first} {last}" == wanted:
            return athlete_id

    parts = wanted.split(" ")
    if len(parts) >= 2:
        for athlete_id, first, last in entries:
            if first == parts[0] and last == parts[-1]:
                return athlete_id
    else:
        same_first = [athlete_id for athlete_id, first, _ in entries if first == wanted]
        if len(same_first) == 1:
            return same_first[0]

    for athlete_id, first, last in entries:
        full = f"{first} {last}"
        if wanted in full or full in wanted:
            return athlete_id
    return None


def cluster_friends(requests: dict[int, list[int]]) -> list[list[int]]:
    """
    Connected components of the friend-request graph with two or more
    members, each sorted, ordered by their smallest id.
    """
    parent: dict[int, int] = {}

    def find(node: int) -> int:
        parent.setdefault(node, node)
        while parent[node] != node:
            parent[node] = parent[parent[node]]
            node = parent[node]
        return node

    for athlete_id, friends in requests.items():
        find(athlete_id)
        for friend_id in friends:
            root_a, root_b = find(athlete_id), find(friend_id)
            if root_a != root_b:
                parent[max(root_a, root_b)] = min(root_a, root_b)

    components: dict[int, list[int]] = {}
    for node in parent:
        components.setdefault(find(node), []).append(node)
    clusters = [sorted(members) for members in components.values() if len(members) > 1]
    return sorted(clusters, key=lambda members: members[0])


# =============================================================================
# Placement
# =============================================================================


@dataclass
class GroupingCamper:
    athlete_id: int
    name: str
    grade: int | None = None


@dataclass
class GroupingWarning:
    kind: str
    message: str
    athlete_ids: list[int]
    severity: str = "warning"  # "error" blocks finalizing


@dataclass
class GroupingPlan:
    assignments: dict[int, list[int]]
    unplaced: list[int]
    warnings: list[GroupingWarning] = field(default_factory=list)
    friend_groups_intact: int = 0
    friend_groups_split: int = 0


def grade_spread(campers: Iterable[GroupingCamper]) -> int:
    grades = [c.grade for c in campers if c.grade is not None]
    return max(grades) - min(grades) if grades else 0


def _fits(members: list[GroupingCamper], incoming: list[GroupingCamper], max_size: int, max_spread: int) -> bool:
    if len(members) + len(incoming) > max_size:
        return False
    return grade_spread(members + incoming) <= max_spread


def _best_fit(
    groups: dict[int, list[GroupingCamper]],
    incoming: list[GroupingCamper],
    max_size: int,
    max_spread: int,
    target_size: int,
) -> int | None:
    """
    Fitting group preference: below the target size, already started,
    smallest grade-spread increase, emptiest. Ties go to the earlier group.
    """
    best, best_key = None, None
    for group_id, members in groups.items():
        if not _fits(members, incoming, max_size, max_spread):
            continue
        key = (
            len(members) >= target_size,
            not members,
            grade_spread(members + incoming) - grade_spread(members),
            len(members),
        )
        if best_key is None or key < best_key:
            best, best_key = group_id, key
    return best


def plan_groups(
    campers: list[GroupingCamper],
    friend_clusters: list[list[int]],
    group_ids: list[int],
    max_size: int,
    max_spread: int,
) -> GroupingPlan:
    """
    Place campers into `group_ids`. Pure: nothing is read from or written to
    the database.
    """
    by_id = {c.athlete_id: c for c in campers}
    groups: dict[int, list[GroupingCamper]] = {group_id: [] for group_id in group_ids}
    placed: set[int] = set()
    plan = GroupingPlan(assignments={}, unplaced=[])
    target_size = min(max_size, math.ceil(len(campers) / len(group_ids))) if group_ids else max_size

    for cluster in friend_clusters:
        members = [by_id[a] for a in cluster if a in by_id]
        if len(members) < 2:
            continue
        ids = [c.athlete_id for c in members]

        if len(members) > max_size:
            plan.warnings.append(GroupingWarning(
                "friend_group_too_large",
                f"Friend group of {len(members)} is larger than the group size of {max_size}",
                ids,
                "error",
            ))
            plan.friend_groups_split += 1
            continue

        spread = grade_spread(members)
        if spread > max_spread:
            plan.warnings.append(GroupingWarning(
                "friend_group_grade_spread",
                f"Friend group spans {spread} grades (max {max_spread})",
                ids,
            ))

        target = _best_fit(groups, members, max_size, max_spread, target_size)
        if target is None:
            plan.warnings.append(GroupingWarning(
                "friend_group_unplaced",
                "Friend group cannot be placed together in any group",
                ids,
                "error",
            ))
            plan.friend_groups_split += 1
            continue
        groups[target].extend(members)
        placed.update(ids)
        plan.friend_groups_intact += 1

    # Campers without a grade sort with kindergarten
    remaining = sorted(
        (c for c in campers if c.athlete_id not in placed),
        key=lambda c: (c.grade if c.grade is not None else 0, c.name),
    )
    for camper in remaining:
        target = _best_fit(groups, [camper], max_size, max_spread, target_size)
        if target is None:
            plan.warnings.append(GroupingWarning(
                "unplaceable_camper",
                f"No group can take {camper.name} (grade {grade_label(camper.grade)})",
                [camper.athlete_id],
                "error",
            ))
            continue
        groups[target].append(camper)
        placed.add(camper.athlete_id)

    plan.assignments = {group_id: [c.athlete_id for c in members] for group_id, members in groups.items()}
    plan.unplaced = [c.athlete_id for c in campers if c.athlete_id not in placed]
    return plan


def grade_label(grade: int | None) -> str:
    if grade is None:
        return "unknown"
    return {-1: "Pre-K", 0: "K"}.get(grade, str(grade))


# =============================================================================
# Service
# =============================================================================


class GroupingService:
    """Automatic grouping, grouping overview and finalization for one camp."""

    def __init__(self, db: Session):
        self._db = db

    def _get_camp(self, camp_id: int) -> Camp:
        camp = self._db.scalar(select(Camp).where(Camp.id == camp_id, Camp.is_active.is_(True)))
        if not camp:
            raise NotFoundError("Camp", camp_id)
        return camp

    @staticmethod
    def require_editable(camp: Camp) -> None:
        """Locked camps and finalized groupings reject every grouping change."""
        if camp.is_locked:
            raise InvalidStateError("Camp", "locked", detail=CAMP_LOCKED_MESSAGE)
        if camp.grouping_finalized:
            raise InvalidStateError(
                "Grouping", GroupingStatus.FINALIZED, detail=GROUPING_FINALIZED_MESSAGE
            )

    def _groups(self, camp_id: int) -> list[CampGroup]:
        return list(self._db.execute(
            select(CampGroup)
            .where(CampGroup.camp_id == camp_id, CampGroup.is_active.is_(True))
            .order_by(CampGroup.sort_order, CampGroup.id)
        ).scalars())

    def _ensure_groups(self, camp: Camp, user_id: int | None) -> list[CampGroup]:
        """Top up the camp to `num_groups` groups with default names and colors."""
        groups = self._groups(camp.id)
        taken = {g.name for g in groups}
        next_order = max((g.sort_order for g in groups), default=0)
        index = 0
        while len(groups) < camp.num_groups:
            name = DEFAULT_GROUP_NAMES[index] if index < len(DEFAULT_GROUP_NAMES) else f"Group {index + 1}"
            color = DEFAULT_GROUP_COLORS[index % len(DEFAULT_GROUP_COLORS)]
            index += 1
            if name in taken:
                continue
            next_order += 1
            group = CampGroup(
                tenant_id=camp.tenant_id,
                camp_id=camp.id,
                name=name,
                color=color,
                sort_order=next_order,
            )
            group.set_created_by(user_id)
            self._db.add(group)
            groups.append(group)
        self._db.flush()
        return groups

    def _roster(self, camp_id: int) -> list[tuple[CamperSessionData, Athlete]]:
        return list(self._db.execute(
            select(CamperSessionData, Athlete)
            .join(Athlete, Athlete.id == CamperSessionData.athlete_id)
            .where(CamperSessionData.camp_id == camp_id, CamperSessionData.is_active.is_(True))
            .order_by(Athlete.last_name, Athlete.first_name, Athlete.id)
        ).all())

    @staticmethod
    def friend_clusters(rows: list[tuple[CamperSessionData, Athlete]]) -> list[list[int]]:
        roster = [(athlete.id, athlete.first_name, athlete.last_name) for _, athlete in rows]
        requests: dict[int, list[int]] = {}
        for session_data, athlete in rows:
            matched = []
            for name in parse_friend_requests(session_data.friend_requests):
                friend_id = match_friend(name, roster)
                if friend_id is not None and friend_id != athlete.id:
                    matched.append(friend_id)
            requests[athlete.id] = matched
        return cluster_friends(requests)

    @staticmethod
    def _camper(athlete: Athlete) -> GroupingCamper:
        return GroupingCamper(athlete.id, athlete.full_name, parse_grade(athlete.grade))

    # =========================================================================
    # Operations
    # =========================================================================

    def set_friend_requests(
        self,
        camp_id: int,
        athlete_id: int,
        friend_requests: str | None,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        camp = self._get_camp(camp_id)
        self.require_editable(camp)
        session_data = self._db.scalar(
            select(CamperSessionData).where(
                CamperSessionData.camp_id == camp_id,
                CamperSessionData.athlete_id == athlete_id,
            )
        )
        if session_data is None:
            raise NotFoundError(
                "Camper", athlete_id, detail="Athlete is not a confirmed camper in this camp"
            )
        session_data.friend_requests = friend_requests
        session_data.set_updated_by(user_id)
        safe_commit(self._db)
        return {
            "athlete_id": athlete_id,
            "friend_requests": friend_requests,
            "parsed": parse_friend_requests(friend_requests),
        }

    def auto_group(self, camp_id: int, user_id: int | None = None) -> dict[str, Any]:
        """
        Replace every group assignment of the camp with a fresh automatic run.

        Raises:
            NotFoundError: Unknown camp
            InvalidStateError: Camp locked or grouping finalized
        """
        camp = self._get_camp(camp_id)
        self.require_editable(camp)

        groups = self._ensure_groups(camp, user_id)
        rows = self._roster(camp_id)
        clusters = self.friend_clusters(rows)
        plan = plan_groups(
            [self._camper(athlete) for _, athlete in rows],
            clusters,
            [g.id for g in groups],
            camp.max_group_size,
            camp.max_grade_spread,
        )

        target = {
            athlete_id: group_id
            for group_id, athlete_ids in plan.assignments.items()
            for athlete_id in athlete_ids
        }
        for session_data, _ in rows:
            group_id = target.get(session_data.athlete_id)
            session_data.assigned_group_id = group_id
            session_data.assignment_type = AssignmentType.AUTO if group_id else None
            session_data.set_updated_by(user_id)

        camp.grouping_status = GroupingStatus.AUTO_GROUPED
        camp.grouping_run_at = utcnow()
        camp.set_updated_by(user_id)
        safe_commit(self._db)

        logger.info(
            "Campers auto-grouped",
            camp_id=camp_id,
            campers=len(rows),
            placed=len(target),
            unplaced=len(plan.unplaced),
            friend_groups_intact=plan.friend_groups_intact,
            friend_groups_split=plan.friend_groups_split,
            user_id=user_id,
        )
        state = self.get_grouping_state(camp_id)
        state["run"] = {
            "total_campers": len(rows),
            "placed_count": len(target),
            "unplaced_count": len(plan.unplaced),
            "friend_groups_intact": plan.friend_groups_intact,
            "friend_groups_split": plan.friend_groups_split,
            "warnings": [asdict(w) for w in plan.warnings],
        }
        return state

    def get_grouping_state(self, camp_id: int) -> dict[str, Any]:
        """Groups with campers and grade stats, the ungrouped list and open problems."""
        camp = self._get_camp(camp_id)
        groups = self._groups(camp_id)
        rows = self._roster(camp_id)
        clusters = self.friend_clusters(rows)

        members: dict[int | None, list[GroupingCamper]] = {g.id: [] for g in groups}
        group_of: dict[int, int | None] = {}
        for session_data, athlete in rows:
            group_id = session_data.assigned_group_id if session_data.assigned_group_id in members else None
            members.setdefault(group_id, []).append(self._camper(athlete))
            group_of[athlete.id] = group_id
        ungrouped = members.pop(None, [])

        warnings: list[GroupingWarning] = []
        group_output = []
        for group in groups:
            campers = members[group.id]
            grades = [c.grade for c in campers if c.grade is not None]
            spread = grade_spread(campers)
            ids = [c.athlete_id for c in campers]
            if len(campers) > camp.max_group_size:
                warnings.append(GroupingWarning(
                    "over_capacity",
                    f"{group.name} has {len(campers)} campers (max {camp.max_group_size})",
                    ids,
                    "error",
                ))
            if spread > camp.max_grade_spread:
                warnings.append(GroupingWarning(
                    "grade_spread",
                    f"{group.name} spans {spread} grades (max {camp.max_grade_spread})",
                    ids,
                ))
            group_output.append({
                "id": group.id,
                "name": group.name,
                "color": group.color,
                "campers": [
                    {"athlete_id": c.athlete_id, "name": c.name, "grade": c.grade} for c in campers
                ],
                "stats": {
                    "count": len(campers),
                    "min_grade": min(grades) if grades else None,
                    "max_grade": max(grades) if grades else None,
                    "grade_spread": spread,
                    "is_full": len(campers) >= camp.max_group_size,
                },
            })

        for cluster in clusters:
            placed_in = {group_of.get(a) for a in cluster if group_of.get(a) is not None}
            if len(placed_in) > 1:
                warnings.append(GroupingWarning(
                    "friend_group_split",
                    f"Friend group of {len(cluster)} is spread over {len(placed_in)} groups",
                    cluster,
                ))

        return {
            "camp_id": camp.id,
            "status": camp.grouping_status,
            "is_finalized": camp.grouping_finalized,
            "finalized_at": camp.grouping_finalized_at,
            "max_group_size": camp.max_group_size,
            "num_groups": camp.num_groups,
            "max_grade_spread": camp.max_grade_spread,
            "groups": group_output,
            "ungrouped": [
                {"athlete_id": c.athlete_id, "name": c.name, "grade": c.grade} for c in ungrouped
            ],
            "total_campers": len(rows),
            "friend_groups_count": len(clusters),
            "warnings": [asdict(w) for w in warnings],
        }

    def finalize_grouping(self, camp_id: int, user_id: int | None = None) -> dict[str, Any]:
        """
        Freeze the groups. Every camper must be in a group and no group may
        be over capacity; grade-spread and split-friend warnings do not block.
        """
        camp = self._get_camp(camp_id)
        self.require_editable(camp)

        state = self.get_grouping_state(camp_id)
        errors = [w for w in state["warnings"] if w["severity"] == "error"]
        if state["ungrouped"] or errors:
            raise ValidationError(
                f"Cannot finalize: {len(state['ungrouped'])} ungrouped campers "
                f"and {len(errors)} violations remaining",
                camp_id=camp_id,
            )

        camp.grouping_status = GroupingStatus.FINALIZED
        camp.grouping_finalized_at = utcnow()
        camp.grouping_finalized_by_id = user_id
        camp.set_updated_by(user_id)
        safe_commit(self._db)

        logger.info("Grouping finalized", camp_id=camp_id, campers=state["total_campers"], user_id=user_id)
        return self.get_grouping_state(camp_id)

    def unfinalize_grouping(self, camp_id: int, user_id: int | None = None) -> dict[str, Any]:
        camp = self._get_camp(camp_id)
        if camp.is_locked:
            raise InvalidStateError("Camp", "locked", detail=CAMP_LOCKED_MESSAGE)
        if not camp.grouping_finalized:
            raise InvalidStateError(
                "Grouping", camp.grouping_status, [GroupingStatus.FINALIZED], camp_id=camp_id
            )

        camp.grouping_status = GroupingStatus.REVIEWED
        camp.grouping_finalized_at = None
        camp.grouping_finalized_by_id = None
        camp.set_updated_by(user_id)
        safe_commit(self._db)

        logger.info("Grouping reopened", camp_id=camp_id, user_id=user_id)
        return self.get_grouping_state(camp_id)

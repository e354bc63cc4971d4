from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from catalog import validate_catalog
from models import (
    Assignment,
    Course,
    Lock,
    Plan,
    Preferences,
    PriorityOrder,
    ScheduleOption,
    TermPlan,
    UnplacedCourse,
    UnplacedReason,
    term_sequence,
)
from settings import DEFAULT_HORIZON_YEARS
from timeslots import choose_option, overlaps

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Observability
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class PlannerEvent:
    kind: str  # level_built | locked | placed | conflict | backtrack | unplaceable
    course_id: Optional[int] = None
    term_id: Optional[str] = None
    detail: str = ""

EventSink = Callable[[PlannerEvent], None]

def _emitter(on_event: Optional[EventSink]) -> EventSink:
    def emit(event: PlannerEvent) -> None:
        logger.debug("%s course=%s term=%s %s", event.kind, event.course_id, event.term_id, event.detail)
        if on_event is not None:
            on_event(event)
    return emit

# -----------------------------------------------------------------------------
# Dependency graph
# -----------------------------------------------------------------------------
@dataclass
class DependencyGraph:
    prerequisites: Dict[int, List[int]]
    dependents: Dict[int, List[int]]   # course -> courses listing it as a correlative
    in_degree: Dict[int, int]          # unmet correlatives; dangling ids never get met
    dangling: Dict[int, List[int]] = field(default_factory=dict)

def build_dependency_graph(
    courses: Sequence[Course],
    approved: Iterable[int] = (),
    locked: Iterable[int] = (),
) -> DependencyGraph:
    """Graph over every non-approved course.

    Approved correlatives count as met. Locked courses start with in-degree 0
    since their placement is fixed regardless of what they depend on.
    """
    approved = set(approved)
    locked = set(locked)
    known = {c.id for c in courses}
    nodes = [c for c in courses if c.id not in approved]

    prerequisites: Dict[int, List[int]] = {}
    dependents: Dict[int, List[int]] = {c.id: [] for c in nodes}
    in_degree: Dict[int, int] = {}
    dangling: Dict[int, List[int]] = {}

    for c in nodes:
        prerequisites[c.id] = list(c.correlatives)
        missing = [r for r in c.correlatives if r not in known]
        if missing:
            dangling[c.id] = missing
        unmet = 0
        for r in c.correlatives:
            if r in approved:
                continue
            unmet += 1
            if r in dependents:
                dependents[r].append(c.id)
        in_degree[c.id] = 0 if c.id in locked else unmet

    return DependencyGraph(prerequisites, dependents, in_degree, dangling)

# -----------------------------------------------------------------------------
# Levels (Kahn's algorithm)
# -----------------------------------------------------------------------------
@dataclass
class Leveling:
    levels: List[List[int]]
    # course -> (reason, cycle members, blocking correlatives)
    unresolved: Dict[int, Tuple[UnplacedReason, List[int], List[int]]]

    @property
    def order(self) -> List[int]:
        return [cid for level in self.levels for cid in level]

def build_levels(
    graph: DependencyGraph,
    order: Sequence[int],
    on_event: Optional[EventSink] = None,
) -> Leveling:
    """Group courses into levels; `order` fixes the order inside each level."""
    emit = _emitter(on_event)
    rank = {cid: i for i, cid in enumerate(order)}
    in_degree = dict(graph.in_degree)

    levels: List[List[int]] = []
    done: Set[int] = set()
    current = sorted((c for c, d in in_degree.items() if d == 0), key=rank.__getitem__)
    while current:
        levels.append(current)
        done.update(current)
        emit(PlannerEvent("level_built", detail=f"level {len(levels) - 1}: {current}"))
        ready: List[int] = []
        for cid in current:
            for dep in graph.dependents.get(cid, []):
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    ready.append(dep)
        current = sorted(ready, key=rank.__getitem__)

    leftover = [c for c in order if c in graph.in_degree and c not in done]
    unresolved = _classify_leftovers(graph, leftover, rank)
    if leftover:
        logger.info("%d course(s) can't be leveled: %s", len(leftover), leftover)
    return Leveling(levels, unresolved)

def _classify_leftovers(
    graph: DependencyGraph,
    leftover: List[int],
    rank: Dict[int, int],
) -> Dict[int, Tuple[UnplacedReason, List[int], List[int]]]:
    left = set(leftover)
    edges = {c: [r for r in graph.prerequisites[c] if r in left] for c in leftover}

    cycle_of: Dict[int, List[int]] = {}
    for comp in _strongly_connected(leftover, edges):
        if len(comp) > 1:
            members = sorted(comp, key=rank.__getitem__)
            for cid in comp:
                cycle_of[cid] = members

    out: Dict[int, Tuple[UnplacedReason, List[int], List[int]]] = {}
    for cid in leftover:
        if cid in cycle_of:
            out[cid] = (UnplacedReason.PREREQUISITE_CYCLE, cycle_of[cid], [])
        elif cid in graph.dangling:
            out[cid] = (UnplacedReason.DANGLING_PREREQUISITE, [], list(graph.dangling[cid]))
        else:
            out[cid] = (UnplacedReason.BLOCKED_PREREQUISITE, [], edges[cid])
    return out

def _strongly_connected(nodes: List[int], edges: Dict[int, List[int]]) -> List[List[int]]:
    """Kosaraju's algorithm, iterative so deep chains don't hit the recursion limit."""
    finished: List[int] = []
    seen: Set[int] = set()
    for root in nodes:
        if root in seen:
            continue
        seen.add(root)
        stack = [(root, iter(edges[root]))]
        while stack:
            node, children = stack[-1]
            for nxt in children:
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append((nxt, iter(edges[nxt])))
                    break
            else:
                stack.pop()
                finished.append(node)

    reverse: Dict[int, List[int]] = {n: [] for n in nodes}
    for n in nodes:
        for m in edges[n]:
            reverse[m].append(n)

    components: List[List[int]] = []
    assigned: Set[int] = set()
    for root in reversed(finished):
        if root in assigned:
            continue
        assigned.add(root)
        comp: List[int] = []
        todo = [root]
        while todo:
            n = todo.pop()
            comp.append(n)
            for m in reverse[n]:
                if m not in assigned:
                    assigned.add(m)
                    todo.append(m)
        components.append(comp)
    return components

# -----------------------------------------------------------------------------
# Term allocation
# -----------------------------------------------------------------------------
class TermAllocator:
    """Places courses into the earliest feasible term, with single-step backtracking.

    A failing course may evict one earlier, non-locked placement if that frees
    the room it needs and the evicted course can be re-placed somewhere else.
    Each (failing course, evicted course) pair is tried at most once and an
    evicted course never returns to the slot it gave up, so a pass stays
    polynomial in courses x terms x options.
    """

    def __init__(
        self,
        courses: Dict[int, Course],
        horizon: Sequence[str],
        preferences: Preferences,
        approved: Iterable[int] = (),
        dependents: Optional[Dict[int, List[int]]] = None,
        on_event: Optional[EventSink] = None,
    ):
        self.courses = courses
        self.horizon = list(horizon)
        self.prefs = preferences
        self.approved = set(approved)
        self.dependents = dependents or {}
        self._emit = _emitter(on_event)

        self.placements: Dict[int, Tuple[int, ScheduleOption]] = {}
        self.locked: Set[int] = set()
        self.unplaced: Dict[int, Tuple[UnplacedReason, str]] = {}
        self.warnings: List[str] = []

        self._term_pos = {t: i for i, t in enumerate(self.horizon)}
        self._term_hours = [0] * len(self.horizon)
        self._term_courses: List[List[int]] = [[] for _ in self.horizon]
        self._commit_log: List[int] = []  # non-locked placements, oldest first
        self._abandoned: Dict[int, Set[Tuple[int, ScheduleOption]]] = {}
        self._tried_swaps: Set[Tuple[int, int]] = set()

    # ---- bookkeeping --------------------------------------------------------
    def _commit(self, cid: int, pos: int, option: ScheduleOption, at: Optional[int] = None) -> None:
        self.placements[cid] = (pos, option)
        self._term_hours[pos] += self.courses[cid].hours
        self._term_courses[pos].append(cid)
        if cid not in self.locked:
            if at is None:
                self._commit_log.append(cid)
            else:
                self._commit_log.insert(at, cid)

    def _release(self, cid: int) -> int:
        pos, _ = self.placements.pop(cid)
        self._term_hours[pos] -= self.courses[cid].hours
        self._term_courses[pos].remove(cid)
        idx = self._commit_log.index(cid)
        self._commit_log.pop(idx)
        return idx

    def _placed_options(self, pos: int) -> List[ScheduleOption]:
        return [self.placements[c][1] for c in self._term_courses[pos]]

    # ---- locks --------------------------------------------------------------
    def lock(self, lock: Lock) -> bool:
        cid = lock.course_id
        if cid not in self.courses:
            self.warnings.append(f"Lock ignored: unknown course {cid}")
            return False
        if cid in self.approved:
            self.warnings.append(f"Lock ignored: course {cid} is already approved")
            return False
        if cid in self.placements:
            self.warnings.append(f"Lock ignored: course {cid} is locked more than once")
            return False
        pos = self._term_pos.get(lock.term_id)
        if pos is None:
            self.warnings.append(f"Lock ignored: term {lock.term_id} is outside the horizon (course {cid})")
            return False

        clashes = [c for c in self._term_courses[pos] if overlaps(self.placements[c][1], lock.schedule)]
        if clashes:
            self.warnings.append(f"{lock.term_id}: locked course {cid} overlaps locked course(s) {clashes}")
        self.locked.add(cid)
        self._commit(cid, pos, lock.schedule)
        if self._term_hours[pos] > self.prefs.max_hours_per_term:
            self.warnings.append(
                f"{lock.term_id}: locked courses use {self._term_hours[pos]}h, "
                f"over the {self.prefs.max_hours_per_term}h cap"
            )
        self._emit(PlannerEvent("locked", cid, lock.term_id, lock.schedule.label()))
        return True

    # ---- feasibility --------------------------------------------------------
    def _prereqs_met(self, course: Course, pos: int) -> bool:
        for r in course.correlatives:
            if r in self.approved:
                continue
            placed = self.placements.get(r)
            if placed is None or placed[0] >= pos:
                return False
        return True

    def _dependent_limit(self, cid: int) -> int:
        """First term index the course may no longer use because a placed dependent sits there."""
        limit = len(self.horizon)
        for dep in self.dependents.get(cid, []):
            placed = self.placements.get(dep)
            if placed is not None:
                limit = min(limit, placed[0])
        return limit

    def _candidate_terms(self, course: Course) -> List[int]:
        limit = self._dependent_limit(course.id)
        positions = list(range(limit))
        if self.prefs.prefer_suggested_term:
            suggested = self._term_pos.get(course.suggested_term_id() or "")
            if suggested is not None and suggested < limit:
                positions.remove(suggested)
                positions.insert(0, suggested)
        return positions

    def _fits(self, course: Course, pos: int, report: bool = False) -> Optional[ScheduleOption]:
        if self._term_hours[pos] + course.hours > self.prefs.max_hours_per_term:
            if report:
                self._emit(PlannerEvent("conflict", course.id, self.horizon[pos], "hour cap"))
            return None
        excluded = [opt for p, opt in self._abandoned.get(course.id, ()) if p == pos]
        option = choose_option(
            course.schedule_options,
            self._placed_options(pos),
            self.prefs.preferred_time_of_day,
            excluded,
        )
        if option is None and report:
            self._emit(PlannerEvent("conflict", course.id, self.horizon[pos], "no compatible schedule option"))
        return option

    def _find_placement(self, course: Course, report: bool = False) -> Optional[Tuple[int, ScheduleOption]]:
        for pos in self._candidate_terms(course):
            if not self._prereqs_met(course, pos):
                continue
            option = self._fits(course, pos, report)
            if option is not None:
                return pos, option
        return None

    # ---- search -------------------------------------------------------------
    def place(self, cid: int) -> bool:
        course = self.courses[cid]
        if not course.schedule_options:
            self._mark_unplaced(cid, UnplacedReason.NO_SCHEDULE_OPTIONS, "course has no schedule options")
            return False

        found = self._find_placement(course, report=True)
        if found is not None:
            pos, option = found
            self._commit(cid, pos, option)
            self.unplaced.pop(cid, None)
            self._emit(PlannerEvent("placed", cid, self.horizon[pos], option.label()))
            return True

        if self.prefs.backtracking and self._backtrack(course):
            self.unplaced.pop(cid, None)
            return True

        self._mark_unplaced(cid, *self._failure_reason(course))
        return False

    def _backtrack(self, course: Course) -> bool:
        for victim_id in reversed(list(self._commit_log)):
            key = (course.id, victim_id)
            if key in self._tried_swaps or victim_id in course.correlatives:
                continue
            vpos, voption = self.placements[victim_id]
            if vpos >= self._dependent_limit(course.id) or not self._prereqs_met(course, vpos):
                continue
            self._tried_swaps.add(key)

            idx = self._release(victim_id)
            option = self._fits(course, vpos)
            if option is None:
                self._commit(victim_id, vpos, voption, at=idx)
                continue

            self._commit(course.id, vpos, option)
            abandoned = self._abandoned.setdefault(victim_id, set())
            fresh = (vpos, voption) not in abandoned
            abandoned.add((vpos, voption))
            moved = self._find_placement(self.courses[victim_id])
            if moved is None:
                # roll back: the evicted course has nowhere else to go
                self._release(course.id)
                if fresh:
                    abandoned.discard((vpos, voption))
                self._commit(victim_id, vpos, voption, at=idx)
                continue

            self._commit(victim_id, *moved)
            self._emit(PlannerEvent(
                "backtrack", course.id, self.horizon[vpos],
                f"moved course {victim_id} from {self.horizon[vpos]} to {self.horizon[moved[0]]}",
            ))
            self._emit(PlannerEvent("placed", course.id, self.horizon[vpos], option.label()))
            return True
        return False

    def _failure_reason(self, course: Course) -> Tuple[UnplacedReason, str]:
        waiting = [r for r in course.correlatives if r not in self.approved and r not in self.placements]
        if waiting:
            return UnplacedReason.BLOCKED_PREREQUISITE, f"correlative(s) {waiting} were not placed"
        return (
            UnplacedReason.HORIZON_EXHAUSTED,
            f"no term in the horizon fits {course.hours}h under the "
            f"{self.prefs.max_hours_per_term}h cap without a schedule conflict",
        )

    def _mark_unplaced(self, cid: int, reason: UnplacedReason, detail: str) -> None:
        self.unplaced[cid] = (reason, detail)
        self._emit(PlannerEvent("unplaceable", cid, None, f"{reason.value}: {detail}"))

    def run(self, order: Sequence[int]) -> None:
        worklist = deque(c for c in order if c not in self.placements and c not in self.approved)
        while worklist:
            self.place(worklist.popleft())

        # Later backtracks can free room for courses given up on earlier in the pass.
        placed_any = True
        while placed_any and self.unplaced:
            placed_any = False
            for cid in list(self.unplaced):
                course = self.courses[cid]
                if not course.schedule_options:
                    continue
                found = self._find_placement(course)
                if found is not None:
                    self._commit(cid, *found)
                    del self.unplaced[cid]
                    self._emit(PlannerEvent("placed", cid, self.horizon[found[0]], found[1].label()))
                    placed_any = True

        for cid, (reason, _) in list(self.unplaced.items()):
            if reason is not UnplacedReason.NO_SCHEDULE_OPTIONS:
                self.unplaced[cid] = self._failure_reason(self.courses[cid])

# -----------------------------------------------------------------------------
# Plan assembly
# -----------------------------------------------------------------------------
def assemble_plan(
    courses: Sequence[Course],
    horizon: Sequence[str],
    allocator: TermAllocator,
    leveling: Leveling,
) -> Plan:
    terms = [TermPlan(term_id=t) for t in horizon]
    unplaced: List[UnplacedCourse] = []

    for c in courses:
        placed = allocator.placements.get(c.id)
        if placed is not None:
            pos, option = placed
            terms[pos].assignments.append(Assignment(
                course_id=c.id, name=c.name, term_id=horizon[pos], schedule=option, hours=c.hours,
            ))
            terms[pos].hours += c.hours
        elif c.id in leveling.unresolved:
            reason, cycle, blockers = leveling.unresolved[c.id]
            if reason is UnplacedReason.PREREQUISITE_CYCLE:
                detail = f"prerequisite cycle among courses {cycle}"
            elif reason is UnplacedReason.DANGLING_PREREQUISITE:
                detail = f"correlative(s) {blockers} are not in the catalog"
            else:
                detail = f"waits on unresolvable correlative(s) {blockers}"
            unplaced.append(UnplacedCourse(course_id=c.id, name=c.name, reason=reason, detail=detail, cycle=cycle))
        elif c.id in allocator.unplaced:
            reason, detail = allocator.unplaced[c.id]
            unplaced.append(UnplacedCourse(course_id=c.id, name=c.name, reason=reason, detail=detail))

    return Plan(terms=terms, unplaced=unplaced, warnings=list(allocator.warnings))

# -----------------------------------------------------------------------------
# Entry points
# -----------------------------------------------------------------------------
def check_horizon(horizon: Sequence[str]) -> List[str]:
    out: List[str] = []
    for t in horizon:
        if not isinstance(t, str) or not t.strip():
            raise ValueError(f"Invalid term id in horizon: {t!r}")
        if t in out:
            raise ValueError(f"Duplicate term id in horizon: {t}")
        out.append(t)
    if not out:
        raise ValueError("Planning horizon is empty")
    return out

def course_order(courses: Sequence[Course], preferences: Preferences) -> List[int]:
    if preferences.priority == PriorityOrder.PREREQUISITES:
        ranked = sorted(
            enumerate(courses),
            key=lambda pair: (-len(pair[1].correlatives), -pair[1].hours, pair[0]),
        )
        return [c.id for _, c in ranked]
    return [c.id for c in courses]

def plan_courses(
    courses: Sequence[Course],
    preferences: Optional[Preferences] = None,
    horizon: Optional[Sequence[str]] = None,
    approved: Iterable[int] = (),
    locks: Iterable[Lock] = (),
    on_event: Optional[EventSink] = None,
) -> Plan:
    """Assign every pending course to a term and a schedule option.

    Works on private copies of the inputs, so the caller's catalog is never
    touched and repeated runs give the same Plan. Courses that can't be
    placed end up in ``Plan.unplaced`` with a reason; nothing short of an
    invalid catalog or horizon raises.
    """
    prefs = preferences.model_copy() if preferences is not None else Preferences()
    horizon = check_horizon(horizon if horizon is not None else term_sequence(DEFAULT_HORIZON_YEARS))
    working = validate_catalog(courses)
    by_id = {c.id: c for c in working}
    approved = {a for a in approved if a in by_id}
    locks = [lk.model_copy(deep=True) for lk in locks]

    allocator = TermAllocator(by_id, horizon, prefs, approved, on_event=on_event)
    for lk in locks:
        allocator.lock(lk)

    graph = build_dependency_graph(working, approved, allocator.locked)
    allocator.dependents = graph.dependents
    leveling = build_levels(graph, course_order([c for c in working if c.id not in approved], prefs), on_event)
    allocator.run(leveling.order)

    plan = assemble_plan(working, horizon, allocator, leveling)
    logger.info(
        "Planned %d course(s) over %d term(s); %d unplaced",
        len(allocator.placements), len(horizon), len(plan.unplaced),
    )
    return plan

def locks_from_plan(plan: Plan) -> List[Lock]:
    """Turn every assignment of a plan into a Lock for re-planning.

    Only placements carry over. Warnings about locks the earlier run ignored
    are not reproduced, since those locks never made it into the plan.
    """
    return [
        Lock(course_id=a.course_id, term_id=t.term_id, schedule=a.schedule)
        for t in plan.terms
        for a in t.assignments
    ]

# -----------------------------------------------------------------------------
# Validators
# -----------------------------------------------------------------------------
def validate_plan(
    plan: Plan,
    courses: Sequence[Course],
    max_hours_per_term: int,
    approved: Iterable[int] = (),
) -> List[str]:
    """Check a plan against hour caps, slot overlaps and prerequisite ordering."""
    by_id = {c.id: c for c in courses}
    approved = set(approved)
    errors: List[str] = []
    pos_of: Dict[int, int] = {}

    for idx, term in enumerate(plan.terms):
        hours = 0
        for a in term.assignments:
            if a.course_id in pos_of:
                errors.append(f"{term.term_id}: course {a.course_id} is assigned more than once")
                continue
            pos_of[a.course_id] = idx
            course = by_id.get(a.course_id)
            if course is None:
                errors.append(f"{term.term_id}: unknown course {a.course_id}")
                continue
            hours += course.hours
        if hours > max_hours_per_term:
            errors.append(f"{term.term_id}: {hours}h exceeds the {max_hours_per_term}h cap")
        for i, a in enumerate(term.assignments):
            for b in term.assignments[i + 1:]:
                if overlaps(a.schedule, b.schedule):
                    errors.append(
                        f"{term.term_id}: {a.course_id} ({a.schedule.label()}) overlaps "
                        f"{b.course_id} ({b.schedule.label()})"
                    )

    for idx, term in enumerate(plan.terms):
        for a in term.assignments:
            course = by_id.get(a.course_id)
            if course is None:
                continue
            for r in course.correlatives:
                if r in approved:
                    continue
                prereq_pos = pos_of.get(r)
                if prereq_pos is None or prereq_pos >= idx:
                    errors.append(f"{term.term_id}: {a.course_id} missing prerequisite {r}")
    return errors

"""Bottom-up roll-up of worker findings into team and mission reports.

Classification is the same at both levels: Critical if any critical count is
above zero, else Advisory if any warning count is above zero, else Nominal.
Report headlines depend only on the totals and the per-member statuses, so
they are reproducible for the same results.
"""

from typing import assert_never

from models.domain import (
    HealthLevel,
    MissionReport,
    Team,
    TeamReport,
    WorkerResult,
)


def classify_findings(warnings: int, critical: int) -> HealthLevel:
    if critical > 0:
        return HealthLevel.CRITICAL
    if warnings > 0:
        return HealthLevel.ADVISORY
    return HealthLevel.NOMINAL


def level_marker(level: HealthLevel) -> str:
    match level:
        case HealthLevel.CRITICAL:
            return "CRITICAL"
        case HealthLevel.ADVISORY:
            return "ADVISORY"
        case HealthLevel.NOMINAL:
            return "NOMINAL"
        case _:
            assert_never(level)


def aggregate_team(team: Team, results: list[WorkerResult]) -> TeamReport:
    """Roll up a team's worker results into its report.

    Args:
        team: The team that executed
        results: One result per worker, in execution order

    Returns:
        TeamReport with totals, level, per-worker statuses and headline text
    """
    warnings = sum(result.findings.warnings for result in results)
    critical = sum(result.findings.critical for result in results)
    level = classify_findings(warnings, critical)
    worker_statuses = {result.agent_id: result.status for result in results}

    lines = [
        f"[{level_marker(level)}] {team.name}: {warnings} warning(s), {critical} critical.",
        "Workers: "
        + ", ".join(f"{result.agent_name}={result.status}" for result in results),
    ]
    return TeamReport(
        team_id=team.id,
        team_name=team.name,
        level=level,
        warnings=warnings,
        critical=critical,
        worker_statuses=worker_statuses,
        content="\n".join(lines),
    )


def aggregate_mission(reports: list[TeamReport]) -> MissionReport:
    """Roll up team reports into the mission summary."""
    warnings = sum(report.warnings for report in reports)
    critical = sum(report.critical for report in reports)
    level = classify_findings(warnings, critical)

    lines = [
        f"[{level_marker(level)}] Mission sequence complete. All reports aggregated.",
        f"Teams: {len(reports)}, warnings: {warnings}, critical: {critical}.",
    ]
    lines.extend(f"- {report.team_name}: {report.level}" for report in reports)
    return MissionReport(
        level=level,
        warnings=warnings,
        critical=critical,
        team_levels={report.team_id: report.level for report in reports},
        content="\n".join(lines),
    )


def with_narrative(headline: str, narrative: str) -> str:
    """Append a provider narrative below a report headline."""
    narrative = narrative.strip()
    return f"{headline}\n\n{narrative}" if narrative else headline

"""
Batch analysis of every application received by one posting.

Each application is scored independently: an oracle failure degrades only
that application's report, and applications without CV text are skipped.
"""
import asyncio
import os
import re
from pathlib import Path
from typing import List, Optional, Tuple

import pandas as pd

from cvmatch.config import Settings, get_settings
from cvmatch.models.schemas import Application, Posting
from cvmatch.models.scorecard import AnalysisReport, Degraded
from cvmatch.models.weights import WeightPair
from cvmatch.services.oracle import ScoringOracle
from cvmatch.services.scoring import failed_analysis, validate_analysis
from cvmatch.services.stores import ApplicationStore, PostingStore
from cvmatch.utils.exceptions import NotFoundError
from cvmatch.utils.logging_config import PerformanceMonitor, get_logger, log_function_call

logger = get_logger(__name__)

MAX_SCANNED_SKILLS = 5

SKILL_VOCABULARY = [
    "Python", "JavaScript", "TypeScript", "Java", "C#", "C++", "Golang", "Rust", "PHP", "Ruby",
    "React", "Angular", "Vue", "Node.js", "Django", "Flask", "FastAPI", "Spring",
    "SQL", "PostgreSQL", "MySQL", "MongoDB", "Redis",
    "Docker", "Kubernetes", "AWS", "Azure", "GCP", "Git", "Linux",
    "Machine Learning", "Data Analysis", "REST API", "GraphQL", "Agile", "Scrum",
]


def _skill_pattern(skill: str) -> re.Pattern:
    # word boundaries break on skills like "C#" / "C++", so guard with lookarounds instead
    return re.compile(r"(?<![\w+#.])" + re.escape(skill.lower()) + r"(?![\w+#])")


SKILL_PATTERNS = [(skill, _skill_pattern(skill)) for skill in SKILL_VOCABULARY]


def scan_skills(text: str, limit: int = MAX_SCANNED_SKILLS) -> List[str]:
    lowered = (text or "").lower()
    found = []
    for skill, pattern in SKILL_PATTERNS:
        if pattern.search(lowered):
            found.append(skill)
            if len(found) >= limit:
                break
    return found


class ApplicationAnalyzer:
    def __init__(
        self,
        postings: PostingStore,
        applications: ApplicationStore,
        oracle: ScoringOracle,
        settings: Settings = None,
    ):
        self.postings = postings
        self.applications = applications
        self.oracle = oracle
        self.settings = settings or get_settings()

    def _identity(self, application: Application) -> dict:
        applicant = application.applicant
        return {
            "application_id": application.application_id,
            "document_id": application.document_id,
            "applicant_id": application.applicant_id,
            "applicant_name": applicant.name if applicant else None,
            "applicant_email": applicant.email if applicant else None,
        }

    async def _analyze_one(self, application: Application, posting: Posting, weights: WeightPair) -> Optional[AnalysisReport]:
        document = application.document
        if document is None or not document.has_content:
            logger.warning(f"Skipping application {application.application_id}: CV has no text")
            return None

        identity = self._identity(application)
        try:
            raw = await self.oracle.ascore(document.content, posting, weights)
        except Exception as e:
            logger.error(f"Oracle failed for application {application.application_id}: {e}")
            report = failed_analysis(str(e), **identity)
        else:
            result = validate_analysis(raw, **identity)
            if isinstance(result, Degraded):
                logger.warning(f"Application {application.application_id}: {result.reason}")
            report = result.value

        # prefer the skills the oracle reported
        if report.skills:
            report.skills = report.skills[:MAX_SCANNED_SKILLS]
        else:
            report.skills = scan_skills(document.content)

        try:
            await self.applications.attach_analysis(application.application_id, report)
        except Exception as e:
            logger.error(f"Could not store analysis for application {application.application_id}: {e}")
        return report

    @log_function_call
    async def analyze_applications(self, posting_id: str) -> List[AnalysisReport]:
        """Analyze every application for a posting; returns reports sorted by match_score"""
        posting = await self.postings.get(posting_id)
        if posting is None:
            raise NotFoundError("Posting", posting_id)

        applications = await self.applications.list_for_posting(posting_id)
        weights = WeightPair.resolve(posting.matching_weights, self.settings.matching.technical_weight)
        semaphore = asyncio.Semaphore(self.settings.processing.max_concurrent)

        async def guarded(application: Application) -> Optional[AnalysisReport]:
            async with semaphore:
                return await self._analyze_one(application, posting, weights)

        with PerformanceMonitor(f"analyze {len(applications)} applications for {posting_id}", logger, threshold_ms=60000):
            results = await asyncio.gather(*(guarded(a) for a in applications))

        reports = [r for r in results if r is not None]
        reports.sort(key=lambda r: r.match_score, reverse=True)
        failed = sum(1 for r in reports if r.error)
        logger.info(f"Posting {posting_id}: analyzed {len(reports)}/{len(applications)} applications ({failed} degraded)")
        return reports


def write_analysis_report(posting: Posting, reports: List[AnalysisReport], report_dir: str) -> Tuple[str, str]:
    """Write the ranked batch as CSV and a Markdown top-10 summary; returns both paths"""
    Path(report_dir).mkdir(parents=True, exist_ok=True)

    columns = [
        "application_id", "applicant_name", "match_score", "final_technical_score",
        "final_hr_score", "general_recommendation", "skills", "error", "error_message",
    ]
    data = [{
        "application_id": r.application_id,
        "applicant_name": r.applicant_name or "",
        "match_score": round(r.match_score, 2),
        "final_technical_score": round(r.final_technical_score, 2),
        "final_hr_score": round(r.final_hr_score, 2),
        "general_recommendation": r.general_recommendation,
        "skills": ", ".join(r.skills),
        "error": r.error,
        "error_message": r.error_message or "",
    } for r in reports]

    df = pd.DataFrame(data, columns=columns)
    if len(df):
        df = df.sort_values("match_score", ascending=False, kind="stable")

    csv_path = os.path.join(report_dir, f"{posting.posting_id}_applications.csv")
    df.to_csv(csv_path, index=False)

    md_lines = [f"# {posting.title} - Applicant Analysis"]
    if posting.company:
        md_lines.append(f"**Company**: {posting.company}\n")

    if len(df):
        md_lines += [
            "| Rank | Applicant | Score | Technical | HR | Recommendation |",
            "|---:|---|---:|---:|---:|---|",
        ]
        for i, r in enumerate(df.head(10).itertuples(), start=1):
            name = r.applicant_name or r.application_id
            flag = " (degraded)" if r.error else ""
            md_lines.append(
                f"| {i} | {name}{flag} | {r.match_score:.1f} | {r.final_technical_score:.1f} | "
                f"{r.final_hr_score:.1f} | {r.general_recommendation} |"
            )
    else:
        md_lines.append("> No applications could be analyzed for this posting.\n")

    md_path = os.path.join(report_dir, f"{posting.posting_id}_applications.md")
    Path(md_path).write_text("\n".join(md_lines), encoding="utf-8")
    logger.info(f"Wrote analysis report for {posting.posting_id}: {csv_path}, {md_path}")
    return csv_path, md_path

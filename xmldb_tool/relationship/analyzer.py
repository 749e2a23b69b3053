"""
Value-based relationship discovery across a corpus of XML files.

Analysis runs in five phases:

1. Collection - every leaf element and attribute of every file becomes a column
   with its distinct values.
2. Key selection - nearly unique name columns become relationship targets.
3. Value index - value -> key columns containing it.
4. Matching - each source column counts shared values per key column.
5. Gating and scoring - coverage thresholds, semantic kind compatibility and
   name token similarity decide acceptance; a confidence score ranks results.

Long runs can be cancelled cooperatively through a ``threading.Event``.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from lxml import etree

from ..parsing.xml_parser import element_children, local_name
from .collector import ColumnCollector, SemanticKind, token_similarity
from .config import AnalyzerConfig
from .report import Relationship, RelationshipReport


REPORT_RELATIVE_PATH = Path("analysis") / "relationship-analysis.json"

ProgressCallback = Callable[[Path], None]
ColumnKey = Tuple[str, str]


class AnalysisCancelled(Exception):
    """Raised when a running analysis observes its cancellation event."""

    def __init__(self):
        super().__init__("analysis_cancelled")


class _MatchStats:
    def __init__(self, sample_size: int):
        self.sample_size = sample_size
        self.match_count = 0
        self.samples: List[str] = []

    def record(self, value: str) -> None:
        self.match_count += 1
        if len(self.samples) < self.sample_size:
            self.samples.append(value)


class RelationshipAnalyzer:
    """
    Detects columns whose values reference name columns of other files.

    Args:
        config: Thresholds; defaults apply when omitted
    """

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config or AnalyzerConfig()
        self._parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True,
                                       remove_comments=True, remove_pis=True)

    def analyze(self, base_directories: Sequence[Union[str, Path]], config: Optional[AnalyzerConfig] = None,
                progress_callback: Optional[ProgressCallback] = None,
                cancel_event: Optional[threading.Event] = None) -> RelationshipReport:
        """
        Analyze every XML file below ``base_directories``.

        Raises:
            AnalysisCancelled: If ``cancel_event`` is set while running
        """
        config = config or self.config
        directories = [Path(d) for d in base_directories or []]
        report = RelationshipReport.empty(directories, config)
        if not directories:
            return report

        collectors = self.collect_columns(directories, config, progress_callback, cancel_event, report)
        key_columns, relationships = self.analyze_columns(collectors.values(), config, cancel_event)

        report.relationships = relationships
        report.column_count = len(collectors)
        report.key_column_count = len(key_columns)
        self.logger.info(f"Relationship analysis: {report.files_scanned} files, {len(collectors)} columns, "
                         f"{len(key_columns)} key columns, {len(relationships)} relationships")
        return report

    def collect_columns(self, directories: List[Path], config: AnalyzerConfig,
                        progress_callback: Optional[ProgressCallback] = None,
                        cancel_event: Optional[threading.Event] = None,
                        report: Optional[RelationshipReport] = None) -> Dict[ColumnKey, ColumnCollector]:
        """Phase 1: gather column values from every file."""
        collectors: Dict[ColumnKey, ColumnCollector] = {}
        for base_dir in directories:
            self._check_cancelled(cancel_event)
            if not base_dir.is_dir():
                self.logger.warning(f"Skipping missing directory {base_dir}")
                continue
            files = sorted(p for p in base_dir.rglob('*') if p.is_file() and p.suffix.lower() == '.xml')
            for path in files:
                self._check_cancelled(cancel_event)
                self._notify_progress(progress_callback, path)
                if self._collect_file(base_dir, path, collectors, config, cancel_event):
                    if report is not None:
                        report.files_scanned += 1
                elif report is not None:
                    report.files_failed.append(str(path))
        return collectors

    def _collect_file(self, base_dir: Path, path: Path, collectors: Dict[ColumnKey, ColumnCollector],
                      config: AnalyzerConfig, cancel_event: Optional[threading.Event]) -> bool:
        try:
            root = etree.parse(str(path), self._parser).getroot()
        except (etree.XMLSyntaxError, OSError) as e:
            self.logger.warning(f"Failed to parse XML file {path}: {e}")
            return False

        file_key = path.relative_to(base_dir).as_posix()
        stack = [(root, local_name(root))]
        while stack:
            self._check_cancelled(cancel_event)
            element, current_path = stack.pop()

            for name, value in element.attrib.items():
                attribute = name.rsplit('}', 1)[-1]
                key = (file_key, f"{current_path}/@{attribute}")
                collector = collectors.get(key)
                if collector is None:
                    collector = collectors[key] = ColumnCollector(file_key, key[1], attribute, attribute=True)
                collector.add_value(value, config)

            children = element_children(element)
            if not children:
                key = (file_key, current_path)
                collector = collectors.get(key)
                if collector is None:
                    collector = collectors[key] = ColumnCollector(file_key, current_path, local_name(element))
                collector.add_value(element.text, config)
                continue

            for child in reversed(children):
                stack.append((child, f"{current_path}/{local_name(child)}"))
        return True

    def analyze_columns(self, collectors: Iterable[ColumnCollector], config: Optional[AnalyzerConfig] = None,
                        cancel_event: Optional[threading.Event] = None
                        ) -> Tuple[List[ColumnCollector], List[Relationship]]:
        """Phases 2 to 5 over already collected columns."""
        config = config or self.config
        columns = list(collectors)

        key_columns = [column for column in columns if column.is_likely_key(config)]

        value_index: Dict[str, List[ColumnCollector]] = {}
        for column in key_columns:
            self._check_cancelled(cancel_event)
            for value in column.values:
                value_index.setdefault(value, []).append(column)

        kinds: Dict[ColumnKey, SemanticKind] = {}
        relationships: List[Relationship] = []

        for source in columns:
            self._check_cancelled(cancel_event)
            if source.overflow or source.unique_value_count < config.min_source_unique_values:
                continue

            matches: Dict[ColumnKey, Tuple[ColumnCollector, _MatchStats]] = {}
            for value in source.values:
                for candidate in value_index.get(value, ()):
                    if candidate is source:
                        continue
                    entry = matches.get(candidate.key)
                    if entry is None:
                        entry = matches[candidate.key] = (candidate, _MatchStats(config.sample_size))
                    entry[1].record(value)

            source_relationships = []
            for target, stats in matches.values():
                relationship = self._score(source, target, stats, config, kinds)
                if relationship is not None:
                    source_relationships.append(relationship)

            source_relationships.sort(key=lambda r: r.confidence, reverse=True)
            if config.max_relationships_per_source > 0:
                source_relationships = source_relationships[:config.max_relationships_per_source]
            relationships.extend(source_relationships)

        relationships.sort(key=lambda r: r.confidence, reverse=True)
        return key_columns, relationships

    def _kind(self, column: ColumnCollector, config: AnalyzerConfig,
              kinds: Dict[ColumnKey, SemanticKind]) -> SemanticKind:
        kind = kinds.get(column.key)
        if kind is None:
            kind = kinds[column.key] = column.semantic_kind(config)
        return kind

    def _score(self, source: ColumnCollector, target: ColumnCollector, stats: _MatchStats,
               config: AnalyzerConfig, kinds: Dict[ColumnKey, SemanticKind]) -> Optional[Relationship]:
        match_count = stats.match_count
        if match_count < config.min_match_count:
            return None

        source_coverage = match_count / source.unique_value_count
        target_coverage = match_count / target.unique_value_count if target.unique_value_count else 0.0
        if source_coverage < config.min_source_coverage or target_coverage < config.min_target_coverage:
            return None

        source_kind = self._kind(source, config, kinds)
        target_kind = self._kind(target, config, kinds)
        if not source_kind.is_compatible_with(target_kind):
            return None

        id_pair = source_kind.is_id_like and target_kind.is_id_like
        if not source.name_tokens or not target.name_tokens:
            similarity = 1.0 if id_pair and source.has_token("id") and target.has_token("id") else 0.0
        else:
            similarity = token_similarity(source.name_tokens, target.name_tokens)

        minimum = config.min_id_name_token_similarity if id_pair else config.min_name_token_similarity
        if similarity < minimum:
            return None

        coverage_score = (source_coverage * config.source_coverage_weight
                          + target_coverage * config.target_coverage_weight)
        semantic_weight = 0.4 if id_pair else 0.6
        confidence = coverage_score * (semantic_weight + (1.0 - semantic_weight) * similarity)
        if source.has_identifier_hint:
            confidence += 0.05
        if target.has_identifier_hint:
            confidence += 0.05
        if source.same_file(target):
            confidence -= 0.05
        confidence = max(0.0, min(1.0, confidence))

        return Relationship(
            source_file=source.file_key,
            source_column=source.column_name,
            source_path=source.column_path,
            target_file=target.file_key,
            target_column=target.column_name,
            target_path=target.column_path,
            match_count=match_count,
            source_coverage=source_coverage,
            target_coverage=target_coverage,
            confidence=confidence,
            name_similarity=similarity,
            sample_values=list(stats.samples),
        )

    def analyze_configured(self, config_manager, database_name: Optional[str] = None,
                           progress_callback: Optional[ProgressCallback] = None,
                           cancel_event: Optional[threading.Event] = None) -> RelationshipReport:
        """
        Analyze the directories configured under ``xmlPath.<database>`` and persist
        the report to ``<conf dir>/analysis/relationship-analysis.json``.
        """
        database_name = database_name or config_manager.database_config.database
        configured = config_manager.get_list(f"xmlPath.{database_name}")
        if not configured:
            self.logger.warning(f"No xmlPath configured for database: {database_name}")
            return RelationshipReport.empty([], self.config)

        directories = []
        for entry in configured:
            path = Path(entry)
            if path.is_dir():
                directories.append(path)
            else:
                self.logger.warning(f"Configured xml path does not exist or is not a directory: {path}")

        report = self.analyze(directories, progress_callback=progress_callback, cancel_event=cancel_event)
        report.persist_report(config_manager.conf_dir / REPORT_RELATIVE_PATH)
        return report

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise AnalysisCancelled()

    def _notify_progress(self, progress_callback: Optional[ProgressCallback], path: Path) -> None:
        if progress_callback is None:
            return
        try:
            progress_callback(path)
        except Exception as e:
            self.logger.warning(f"Progress callback failed for {path}: {e}")

"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import random
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from admission_engine.domain.models import (
    AdmissionEstimate,
    CalibrationRow,
    EstimateRecord,
    Facility,
    FacilityTurnoverRecord,
)
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @staticmethod
    def _ensure_column(
        cursor: sqlite3.Cursor,
        *,
        table: str,
        column: str,
        definition: str,
    ) -> None:
        cursor.execute(f"PRAGMA table_info({table});")
        if column not in {row["name"] for row in cursor.fetchall()}:
            cursor.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition};")
            logger.info("Added column %s.%s", table, column)

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Facilities (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity >= 0),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS TurnoverRecords (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        facility_id TEXT NOT NULL,
                        age_band TEXT NOT NULL,
                        observed_vacancies INTEGER NOT NULL CHECK (observed_vacancies >= 0),
                        observation_window_days INTEGER NOT NULL
                            CHECK (observation_window_days > 0),
                        recorded_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (facility_id) REFERENCES Facilities(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS AdmissionEstimates (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        facility_id TEXT NOT NULL,
                        child_id TEXT NOT NULL,
                        age_band TEXT NOT NULL,
                        priority_type TEXT NOT NULL,
                        additional_priorities TEXT NOT NULL DEFAULT '[]',
                        raw_waiting_position INTEGER NOT NULL,
                        effective_position REAL NOT NULL,
                        probability REAL NOT NULL,
                        admission_score INTEGER NOT NULL,
                        grade TEXT NOT NULL,
                        confidence REAL NOT NULL,
                        posterior_alpha REAL NOT NULL,
                        posterior_beta REAL NOT NULL,
                        horizon_days INTEGER NOT NULL,
                        exposure_days REAL NOT NULL,
                        estimated_wait_days_median INTEGER,
                        estimated_wait_days_80th INTEGER,
                        computed_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS AdmissionOutcomes (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        estimate_id INTEGER NOT NULL UNIQUE,
                        admitted INTEGER NOT NULL CHECK (admitted IN (0,1)),
                        recorded_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (estimate_id) REFERENCES AdmissionEstimates(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_turnover_facility_band
                    ON TurnoverRecords(facility_id, age_band);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_estimates_user_computed
                    ON AdmissionEstimates(user_id, computed_at);
                    """
                )
                self._ensure_column(
                    cursor,
                    table="AdmissionEstimates",
                    column="exposure_days",
                    definition="REAL NOT NULL DEFAULT 0",
                )
                # Tables created before outcomes were unique per estimate.
                cursor.execute(
                    """
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_outcomes_estimate
                    ON AdmissionOutcomes(estimate_id);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_synthetic_data(self) -> None:
        """Seed deterministic synthetic facilities and turnover only when empty."""
        rng = random.Random(self._settings.synthetic_random_seed)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute("SELECT COUNT(*) AS count FROM Facilities;")
                facility_count = int(cursor.fetchone()["count"])
                if facility_count > 0:
                    logger.info("Synthetic data already present; skipping seed")
                    return

                facilities = [
                    (
                        f"facility-{index:03d}",
                        f"Daycare {index}",
                        rng.randint(20, 120),
                    )
                    for index in range(1, self._settings.synthetic_facility_count + 1)
                ]
                cursor.executemany(
                    "INSERT INTO Facilities (id, name, capacity) VALUES (?, ?, ?);",
                    facilities,
                )

                window_days = self._settings.synthetic_window_days
                start = datetime.now(timezone.utc) - timedelta(
                    days=window_days * self._settings.synthetic_windows_per_band
                )
                turnover_entries = []
                for facility_id, _, capacity in facilities:
                    for age_band in self._settings.age_bands:
                        # Monthly openings scale with class size.
                        mean_openings = max(0.5, capacity / 40.0)
                        for window in range(self._settings.synthetic_windows_per_band):
                            recorded_at = start + timedelta(days=window_days * (window + 1))
                            vacancies = sum(
                                1
                                for _ in range(int(mean_openings * 4))
                                if rng.random() < 0.25
                            )
                            turnover_entries.append(
                                (
                                    facility_id,
                                    age_band,
                                    vacancies,
                                    window_days,
                                    recorded_at.strftime("%Y-%m-%d %H:%M:%S"),
                                )
                            )

                cursor.executemany(
                    """
                    INSERT INTO TurnoverRecords (
                        facility_id,
                        age_band,
                        observed_vacancies,
                        observation_window_days,
                        recorded_at
                    )
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    turnover_entries,
                )
                conn.commit()
            logger.info(
                "Synthetic seed completed with %s facilities and %s turnover records",
                len(facilities),
                len(turnover_entries),
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Synthetic data seeding failed: {exc}") from exc

    def create_facility(self, facility_id: str, name: str, capacity: int) -> None:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO Facilities (id, name, capacity) VALUES (?, ?, ?);",
                (facility_id, name, capacity),
            )
            conn.commit()

    def get_facility(self, facility_id: str) -> Optional[Facility]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, name, capacity FROM Facilities WHERE id = ?;",
                (facility_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return Facility(
                facility_id=str(row["id"]),
                name=str(row["name"]),
                capacity=int(row["capacity"]),
            )

    def list_turnover_records(
        self,
        facility_id: str,
        age_band: str,
    ) -> List[FacilityTurnoverRecord]:
        """Load every measurement window for one facility and age band."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT facility_id, age_band, observed_vacancies, observation_window_days
                FROM TurnoverRecords
                WHERE facility_id = ? AND age_band = ?
                ORDER BY id ASC;
                """,
                (facility_id, age_band),
            )
            return [
                FacilityTurnoverRecord(
                    facility_id=str(row["facility_id"]),
                    age_band=str(row["age_band"]),
                    observed_vacancies=int(row["observed_vacancies"]),
                    observation_window_days=int(row["observation_window_days"]),
                )
                for row in cursor.fetchall()
            ]

    def turnover_version(self, facility_id: str, age_band: str) -> tuple[int, int]:
        """Cheap fingerprint of one turnover history: (row count, max id)."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT COUNT(*) AS count, COALESCE(MAX(id), 0) AS last_id
                FROM TurnoverRecords
                WHERE facility_id = ? AND age_band = ?;
                """,
                (facility_id, age_band),
            )
            row = cursor.fetchone()
            return int(row["count"]), int(row["last_id"])

    def add_turnover_record(self, record: FacilityTurnoverRecord) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO TurnoverRecords (
                    facility_id,
                    age_band,
                    observed_vacancies,
                    observation_window_days
                )
                VALUES (?, ?, ?, ?);
                """,
                (
                    record.facility_id,
                    record.age_band,
                    record.observed_vacancies,
                    record.observation_window_days,
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def count_turnover_records(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM TurnoverRecords;")
            return int(cursor.fetchone()["count"])

    def save_estimate(
        self,
        *,
        user_id: str,
        facility_id: str,
        child_id: str,
        age_band: str,
        priority_type: str,
        additional_priorities: list[str],
        raw_waiting_position: int,
        estimate: AdmissionEstimate,
    ) -> int:
        """Append one computed estimate to the history store."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO AdmissionEstimates (
                    user_id,
                    facility_id,
                    child_id,
                    age_band,
                    priority_type,
                    additional_priorities,
                    raw_waiting_position,
                    effective_position,
                    probability,
                    admission_score,
                    grade,
                    confidence,
                    posterior_alpha,
                    posterior_beta,
                    horizon_days,
                    exposure_days,
                    estimated_wait_days_median,
                    estimated_wait_days_80th,
                    computed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    user_id,
                    facility_id,
                    child_id,
                    age_band,
                    priority_type,
                    json.dumps(sorted(additional_priorities)),
                    raw_waiting_position,
                    estimate.effective_position,
                    estimate.probability,
                    estimate.admission_score,
                    estimate.grade,
                    estimate.confidence,
                    estimate.posterior_alpha,
                    estimate.posterior_beta,
                    estimate.horizon_days,
                    estimate.exposure_days,
                    estimate.estimated_wait_days_median,
                    estimate.estimated_wait_days_80th,
                    estimate.computed_at.isoformat(),
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    @staticmethod
    def _row_to_estimate_record(row: sqlite3.Row) -> EstimateRecord:
        median = row["estimated_wait_days_median"]
        eightieth = row["estimated_wait_days_80th"]
        return EstimateRecord(
            estimate_id=int(row["id"]),
            user_id=str(row["user_id"]),
            facility_id=str(row["facility_id"]),
            child_id=str(row["child_id"]),
            age_band=str(row["age_band"]),
            priority_type=str(row["priority_type"]),
            additional_priorities=list(json.loads(row["additional_priorities"])),
            raw_waiting_position=int(row["raw_waiting_position"]),
            effective_position=float(row["effective_position"]),
            probability=float(row["probability"]),
            admission_score=int(row["admission_score"]),
            grade=str(row["grade"]),
            confidence=float(row["confidence"]),
            posterior_alpha=float(row["posterior_alpha"]),
            posterior_beta=float(row["posterior_beta"]),
            horizon_days=int(row["horizon_days"]),
            exposure_days=float(row["exposure_days"]),
            estimated_wait_days_median=None if median is None else int(median),
            estimated_wait_days_80th=None if eightieth is None else int(eightieth),
            computed_at=str(row["computed_at"]),
        )

    def list_estimates_for_user(self, user_id: str, limit: int) -> list[EstimateRecord]:
        """Return a user's estimates, most recent first."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT *
                FROM AdmissionEstimates
                WHERE user_id = ?
                ORDER BY computed_at DESC, id DESC
                LIMIT ?;
                """,
                (user_id, limit),
            )
            return [self._row_to_estimate_record(row) for row in cursor.fetchall()]

    def get_estimate(self, estimate_id: int) -> Optional[EstimateRecord]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM AdmissionEstimates WHERE id = ?;",
                (estimate_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return self._row_to_estimate_record(row)

    def count_estimates(self) -> int:
        """Return persisted estimate count for diagnostics and tests."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM AdmissionEstimates;")
            return int(cursor.fetchone()["count"])

    def save_outcome(self, estimate_id: int, admitted: bool) -> bool:
        """Store the first outcome for an estimate; returns False if one exists."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT OR IGNORE INTO AdmissionOutcomes (estimate_id, admitted)
                VALUES (?, ?);
                """,
                (estimate_id, 1 if admitted else 0),
            )
            conn.commit()
            return cursor.rowcount == 1

    def list_calibration_rows(self) -> list[CalibrationRow]:
        """Join observed outcomes with the probability that was estimated."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT e.probability, o.admitted
                FROM AdmissionOutcomes AS o
                INNER JOIN AdmissionEstimates AS e ON e.id = o.estimate_id
                ORDER BY o.id ASC;
                """
            )
            return [
                CalibrationRow(
                    probability=float(row["probability"]),
                    admitted=int(row["admitted"]),
                )
                for row in cursor.fetchall()
            ]

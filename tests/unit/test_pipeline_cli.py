"""
Unit tests for the pipeline command-line interface.
"""

import pytest

from star_pipeline.cli.pipeline_cli import EXIT_ERROR, build_parser, main


class TestParser:
    """Tests for argument parsing"""

    def test_run_defaults(self):
        args = build_parser().parse_args(["run"])

        assert args.command == "run"
        assert args.source == "postgres"
        assert args.source_db_name == "healthcare_oltp"
        assert args.format == "csv"
        assert args.refresh is False

    def test_run_from_extracts(self):
        args = build_parser().parse_args([
            "run", "--source", "extracts", "--extract-dir", "/data/extracts", "--format", "parquet",
            "--report", "out.json", "--refresh",
        ])

        assert args.source == "extracts"
        assert args.extract_dir == "/data/extracts"
        assert args.format == "parquet"
        assert args.report == "out.json"
        assert args.refresh is True

    def test_validate_options(self):
        args = build_parser().parse_args(["validate", "--catalog", "catalog.yaml", "--db-port", "6543"])

        assert args.catalog == "catalog.yaml"
        assert args.db_port == 6543
        assert args.refresh is False

    def test_audit_requires_a_target(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["audit"])

    def test_audit_by_patient(self):
        args = build_parser().parse_args(["audit", "--patient-id", "1001"])

        assert args.patient_id == 1001
        assert args.limit == 100


class TestMain:
    """Tests for the main entry point"""

    def test_no_command(self, capsys):
        assert main([]) == EXIT_ERROR
        assert "usage" in capsys.readouterr().out

    def test_missing_settings_file_is_an_error(self, tmp_path):
        assert main(["validate", "--config", str(tmp_path / "missing.yaml")]) == EXIT_ERROR

    def test_invalid_settings_are_an_error(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text("pipeline:\n  readmission_window_days: 0\n")

        assert main(["run", "--config", str(path)]) == EXIT_ERROR

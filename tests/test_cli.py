"""Tests for the offline parts of the CLI."""

import json

import pytest

import statechart_cli
from conftest import make_project, root_topic


def run_cli(argv, capsys):
    with pytest.raises(SystemExit) as exc_info:
        statechart_cli.main(argv)
    return exc_info.value.code, json.loads(capsys.readouterr().out)


def write_project(tmp_path, project):
    path = tmp_path / "project.json"
    path.write_text(json.dumps(project.to_json_dict()))
    return path


class TestValidateFile:

    def test_valid_project_exits_zero(self, tmp_path, capsys, valid_project):
        code, data = run_cli(["validate-file", str(write_project(tmp_path, valid_project))], capsys)

        assert code == 0
        assert data["issues"] == []
        assert data["blocking"] is False

    def test_blocking_errors_exit_one(self, tmp_path, capsys):
        project = make_project(topics=[root_topic()])
        project.instrument.type = ""
        code, data = run_cli(["validate-file", str(write_project(tmp_path, project))], capsys)

        assert code == 1
        assert data["blocking"] is True
        assert data["summary"]["errors"] >= 1

    def test_field_config_is_applied(self, tmp_path, capsys, valid_project):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"messageTypes": ["Settle"]}))

        code, data = run_cli(
            ["validate-file", str(write_project(tmp_path, valid_project)), "--field-config", str(config_path)],
            capsys,
        )

        assert code == 0
        assert [issue["message"] for issue in data["issues"]] == [
            'Transition messageType "Submit" is not in configured message types'
        ]

    def test_unreadable_file_exits_two(self, tmp_path, capsys):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        code, data = run_cli(["validate-file", str(path)], capsys)

        assert code == 2
        assert data["success"] is False


class TestParser:

    def test_field_choices(self):
        with pytest.raises(SystemExit):
            statechart_cli.build_parser().parse_args(["add-field-value", "--field", "colors", "--value", "X"])

    def test_render_arguments(self):
        args = statechart_cli.build_parser().parse_args(["render", "--project-id", "p1", "--output", "out.svg"])
        assert args.project_id == "p1"
        assert args.topic_id is None
        assert args.output == "out.svg"

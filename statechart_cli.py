#!/usr/bin/env python3
"""Statechart editor CLI - talk to the backend, or validate project files offline."""

import argparse
import json
import os
import sys
import urllib.error
import urllib.parse
import urllib.request

API_BASE = os.environ.get("STATECHART_API", "http://127.0.0.1:8000/api")


def _json_out(data, exit_code=0):
    print(json.dumps(data))
    sys.exit(exit_code)


def _api_request(method, endpoint, data=None, params=None):
    """Make a request to the statechart backend."""
    url = f"{API_BASE}{endpoint}"

    if params:
        filtered = {k: v for k, v in params.items() if v is not None}
        if filtered:
            url = f"{url}?{urllib.parse.urlencode(filtered)}"

    headers = {"Content-Type": "application/json"}
    body = json.dumps(data).encode() if data else None

    req = urllib.request.Request(url, data=body, headers=headers, method=method)

    try:
        with urllib.request.urlopen(req, timeout=30) as response:
            return json.loads(response.read().decode())
    except urllib.error.HTTPError as e:
        error_body = e.read().decode()
        try:
            error_data = json.loads(error_body)
            _json_out({"status": "error", "error": f"API error: {error_data.get('detail', 'Unknown error')}"}, 1)
        except json.JSONDecodeError:
            _json_out({"status": "error", "error": f"API error ({e.code}): {error_body}"}, 1)
    except urllib.error.URLError as e:
        _json_out({"status": "error", "error": f"Connection failed: {e.reason}. Is the statechart backend running?"}, 1)


# ── Gallery ──────────────────────────────────────────────────────────────────

def cmd_list_projects(args):
    _json_out(_api_request("GET", "/projects", params={"search": args.search, "revision": args.revision}))


def cmd_new_project(args):
    _json_out(_api_request("POST", "/projects", data={
        "type": args.type,
        "revision": args.revision,
        "description": args.description,
        "label": args.label,
    }))


# ── Analysis ─────────────────────────────────────────────────────────────────

def cmd_validate(args):
    result = _api_request("GET", f"/projects/{args.project_id}/validate", params={"topic_id": args.topic_id})
    _json_out(result, 1 if result.get("blocking") else 0)


def cmd_render(args):
    result = _api_request("POST", f"/projects/{args.project_id}/render", params={"topic_id": args.topic_id})
    if args.output:
        with open(args.output, "w") as f:
            f.write(result["svg"])
        _json_out({"success": True, "output": args.output, "fromCache": result.get("fromCache", False)})
    _json_out(result)


def cmd_validate_file(args):
    """Validate a project JSON file without a running backend."""
    from pydantic import ValidationError

    from statechart_core.models import DiagramProject, FieldConfig
    from statechart_core.validation import has_blocking_errors, validate_project, validation_summary

    try:
        with open(args.file_path) as f:
            project = DiagramProject.from_json_dict(json.load(f))
        field_config = None
        if args.field_config:
            with open(args.field_config) as f:
                field_config = FieldConfig.model_validate(json.load(f))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        _json_out({"success": False, "error": f"Could not load project: {e}"}, 2)

    issues = validate_project(project, field_config)
    blocking = has_blocking_errors(issues)
    _json_out({
        "success": True,
        "issues": [issue.to_dict() for issue in issues],
        "summary": validation_summary(issues),
        "blocking": blocking
    }, 1 if blocking else 0)


# ── Field configuration ──────────────────────────────────────────────────────

def cmd_add_field_value(args):
    _json_out(_api_request("POST", "/field-config/values", data={"field": args.field, "value": args.value}))


# ── History ──────────────────────────────────────────────────────────────────

def cmd_undo(args):
    _json_out(_api_request("POST", "/undo"))


def cmd_redo(args):
    _json_out(_api_request("POST", "/redo"))


# ── Main ─────────────────────────────────────────────────────────────────────

def build_parser():
    parser = argparse.ArgumentParser(description="Statechart editor CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list-projects")
    p.add_argument("--search", default=None)
    p.add_argument("--revision", default=None)

    p = sub.add_parser("new-project")
    p.add_argument("--type", required=True)
    p.add_argument("--revision", required=True)
    p.add_argument("--description", default=None)
    p.add_argument("--label", default=None)

    p = sub.add_parser("validate")
    p.add_argument("--project-id", required=True)
    p.add_argument("--topic-id", default=None)

    p = sub.add_parser("render")
    p.add_argument("--project-id", required=True)
    p.add_argument("--topic-id", default=None)
    p.add_argument("--output", default=None)

    p = sub.add_parser("validate-file")
    p.add_argument("file_path")
    p.add_argument("--field-config", default=None)

    p = sub.add_parser("add-field-value")
    p.add_argument("--field", required=True,
                   choices=["revisions", "instrumentTypes", "topicTypes", "messageTypes", "flowTypes"])
    p.add_argument("--value", required=True)

    sub.add_parser("undo")
    sub.add_parser("redo")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    cmd_map = {
        "list-projects": cmd_list_projects,
        "new-project": cmd_new_project,
        "validate": cmd_validate,
        "render": cmd_render,
        "validate-file": cmd_validate_file,
        "add-field-value": cmd_add_field_value,
        "undo": cmd_undo,
        "redo": cmd_redo,
    }
    cmd_map[args.command](args)


if __name__ == "__main__":
    main()

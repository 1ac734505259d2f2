"""
ZIP export of a workspace.

Layout:
    builder/statemachine_snapshot.json    every project, as JSON
    <REVISION>/<TYPE>/<topicid>.puml       one diagram per topic
    <REVISION>/<TYPE>/complete.puml        aggregate diagram, when there is a root topic
"""
import io
import json
import zipfile
from typing import Iterable

from statechart_core.models import DiagramProject
from statechart_core.puml import generate_aggregate_puml, generate_topic_puml

SNAPSHOT_PATH = "builder/statemachine_snapshot.json"


def export_projects_zip(projects: Iterable[DiagramProject]) -> bytes:
    """Build the export archive for a set of projects and return its bytes."""
    projects = list(projects)
    buffer = io.BytesIO()

    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        snapshot = [p.to_json_dict() for p in projects]
        archive.writestr(SNAPSHOT_PATH, json.dumps(snapshot, indent=2))

        for project in projects:
            folder = f"{project.instrument.revision.upper()}/{project.instrument.type.upper()}"

            for topic_data in project.topics:
                puml = generate_topic_puml(project, topic_data.topic.id)
                if puml:
                    archive.writestr(f"{folder}/{topic_data.topic.id.lower()}.puml", puml)

            aggregate = generate_aggregate_puml(project)
            if aggregate:
                archive.writestr(f"{folder}/complete.puml", aggregate)

    return buffer.getvalue()

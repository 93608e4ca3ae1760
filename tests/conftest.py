"""Shared fixtures: a scriptable stand-in for the Synthea JAR."""

import json
import os
import sys
import textwrap

import pytest

from synthea_service.generator.runner import GeneratorRunner
from synthea_service.jobs.models import GenerationJob
from synthea_service.jobs.params import GenerationRequest, resolve_parameters
from synthea_service.jobs.store import JobStore
from synthea_service.jobs.worker import GenerationWorker
from synthea_service.storage.object_store import LocalObjectStorage


# Writes one export per patient, mimicking Synthea's output tree
FAKE_SYNTHEA = textwrap.dedent('''
    import json, os, sys

    args = sys.argv[1:]
    with open({calls_path!r}, "a") as log:
        log.write(json.dumps({{"args": args, "cwd": os.getcwd()}}) + "\\n")

    fmt = next(a.split(".")[1] for a in args if a.startswith("--exporter."))
    population = int(args[args.index("-p") + 1])
    out = os.path.join("output", fmt)
    os.makedirs(out)

    if fmt == "fhir":
        with open(os.path.join(out, "hospitalInformation1700000000000.json"), "w") as fh:
            json.dump({{"resourceType": "Bundle", "type": "batch"}}, fh)
        with open(os.path.join(out, "practitionerInformation1700000000000.json"), "w") as fh:
            json.dump({{"resourceType": "Bundle", "type": "batch"}}, fh)
    if fmt == "csv":
        with open(os.path.join(out, "patients.csv"), "w") as fh:
            fh.write("Id,FIRST,LAST\\n")
            for i in range(population):
                fh.write("p%d,Alicia%d,Kautzer%d\\n" % (i, i, i))
        with open(os.path.join(out, "conditions.csv"), "w") as fh:
            fh.write("START,PATIENT,CODE\\n")

    print("Running with options:")
    for i in range(population):
        name = "Alicia%d_Kautzer%d" % (600 + i, 100 + i)
        print("%d -- %s (%d y/o F) Boston, Massachusetts" % (i + 1, name, 30 + i))
        if fmt == "fhir":
            with open(os.path.join(out, name + ".json"), "w") as fh:
                json.dump({{"resourceType": "Bundle", "type": "transaction", "id": name}}, fh)
        elif fmt == "ccda":
            with open(os.path.join(out, name + ".xml"), "w") as fh:
                fh.write("<ClinicalDocument>%s</ClinicalDocument>" % name)
    print("{{alive=%d, dead=0}}" % population)
''')


@pytest.fixture
def make_generator(tmp_path):
    """Build a GeneratorRunner around a Python script.

    ``make_generator()`` returns the Synthea look-alike; ``make_generator(body)``
    runs the given script body instead. Every call's arguments and working
    directory are appended to ``runner.calls_path`` as JSON lines.
    """
    def factory(body=None, timeout_seconds=30):
        calls_path = str(tmp_path / "calls.jsonl")
        script = tmp_path / "fake_synthea.py"
        if body is None:
            source = FAKE_SYNTHEA.format(calls_path=calls_path)
        else:
            source = textwrap.dedent(f'''
                import json, os, sys
                with open({calls_path!r}, "a") as log:
                    log.write(json.dumps({{"args": sys.argv[1:], "cwd": os.getcwd()}}) + "\\n")
            ''') + textwrap.dedent(body)
        script.write_text(source)
        runner = GeneratorRunner(
            command_prefix=[sys.executable, str(script)],
            artifact_path=str(script),
            timeout_seconds=timeout_seconds,
        )
        runner.calls_path = calls_path
        return runner

    return factory


def read_calls(runner):
    if not os.path.exists(runner.calls_path):
        return []
    with open(runner.calls_path) as fh:
        return [json.loads(line) for line in fh if line.strip()]


@pytest.fixture
def store():
    return JobStore()


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(base_dir=str(tmp_path / "storage"))


@pytest.fixture
def work_root(tmp_path):
    root = tmp_path / "work"
    root.mkdir()
    return str(root)


@pytest.fixture
def make_worker(store, storage, work_root):
    def factory(runner, **kwargs):
        return GenerationWorker(
            store=store,
            runner=runner,
            storage=storage,
            work_dir_root=work_root,
            **kwargs,
        )
    return factory


def make_job(**payload):
    params, warnings = resolve_parameters(GenerationRequest.model_validate(payload))
    return GenerationJob(parameters=params, warnings=warnings)

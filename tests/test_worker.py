"""End-to-end tests for GenerationWorker against a fake generator."""

import json
import os

from synthea_service.jobs.models import JobStatus
from synthea_service.storage.object_store import ObjectStorage

from conftest import make_job, read_calls


def _run(worker, store, job):
    store.add(job)
    worker(job)
    return store.get(job.id)


def test_fhir_single_patient_completes(make_generator, make_worker, store, storage, work_root):
    runner = make_generator()
    job = make_job(population=1)
    done = _run(make_worker(runner), store, job)

    assert done.status == JobStatus.COMPLETED
    assert done.error is None
    assert done.result.patient_count == 1
    assert done.result.output_file_content["resourceType"] == "Bundle"
    assert done.result.output_file_content["type"] == "transaction"

    ref = done.result.output
    assert ref.prefix == f"synthea_output/{job.id}"
    assert ref.file_count == 3
    keys = [o.key for o in storage.list(ref.prefix)]
    assert f"synthea_output/{job.id}/fhir/Alicia600_Kautzer100.json" in keys

    assert os.listdir(work_root) == []


def test_csv_multiple_patients(make_generator, make_worker, store):
    done = _run(make_worker(make_generator()), store, make_job(population=3, outputFormat="csv"))

    assert done.status == JobStatus.COMPLETED
    assert done.result.patient_count == 3
    names = [f["fileName"] for f in done.result.output_file_content]
    assert names == ["conditions.csv", "patients.csv"]


def test_keep_module_written_and_passed(make_generator, make_worker, store):
    runner = make_generator()
    job = make_job(
        keepActiveConditions=[{"system": "SNOMED-CT", "code": "44054006"}],
        keepLogic="OR",
    )
    done = _run(make_worker(runner), store, job)
    assert done.status == JobStatus.COMPLETED

    call = read_calls(runner)[0]
    keep_path = call["args"][call["args"].index("-k") + 1]
    assert os.path.realpath(os.path.dirname(keep_path)) == os.path.realpath(call["cwd"])
    assert os.path.basename(keep_path) == "synthea_generated_keep_module.json"
    # removed together with the working directory
    assert not os.path.exists(keep_path)


def test_no_keep_flag_without_criteria(make_generator, make_worker, store):
    runner = make_generator()
    _run(make_worker(runner), store, make_job(population=2))
    assert "-k" not in read_calls(runner)[0]["args"]


def test_non_zero_exit_fails_with_stderr(make_generator, make_worker, store, work_root):
    runner = make_generator('''
        sys.stderr.write("java.lang.OutOfMemoryError: heap\\n")
        sys.exit(1)
    ''')
    done = _run(make_worker(runner), store, make_job())

    assert done.status == JobStatus.FAILED
    assert "OutOfMemoryError" in done.error
    assert done.result is None
    assert os.listdir(work_root) == []


def test_timeout_fails_and_cleans_up(make_generator, make_worker, store, work_root):
    runner = make_generator('''
        import time
        os.makedirs("output/fhir")
        time.sleep(30)
    ''', timeout_seconds=1)
    done = _run(make_worker(runner), store, make_job())

    assert done.status == JobStatus.FAILED
    assert "did not finish" in done.error
    cwd = read_calls(runner)[0]["cwd"]
    assert not os.path.exists(cwd)
    assert os.listdir(work_root) == []


def test_missing_generator_fails_without_spawning(make_generator, make_worker, store, tmp_path):
    runner = make_generator()
    runner.artifact_path = str(tmp_path / "synthea-with-dependencies.jar")
    done = _run(make_worker(runner), store, make_job())

    assert done.status == JobStatus.FAILED
    assert "not found" in done.error
    assert read_calls(runner) == []


def test_keep_module_failure_skips_invocation(make_generator, make_worker, store, monkeypatch):
    from synthea_service.jobs import worker as worker_module
    from synthea_service.jobs.errors import KeepModuleError

    def broken(module, directory):
        raise KeepModuleError("Failed to write keep module file: disk full")

    monkeypatch.setattr(worker_module, "write_keep_module", broken)
    runner = make_generator()
    done = _run(
        make_worker(runner), store,
        make_job(keepActiveAllergies=[{"system": "RxNorm", "code": "7980"}]),
    )

    assert done.status == JobStatus.FAILED
    assert "disk full" in done.error
    assert read_calls(runner) == []


class _FailingStorage(ObjectStorage):
    def __init__(self, fail_after):
        self.fail_after = fail_after
        self.keys = []

    def put(self, key, data, content_type="application/octet-stream"):
        if len(self.keys) >= self.fail_after:
            raise IOError("bucket unavailable")
        self.keys.append(key)

    def list(self, prefix):
        return []

    def presigned_url(self, key, ttl_seconds):
        return key


def test_upload_failure_fails_job(make_generator, store, work_root):
    from synthea_service.jobs.worker import GenerationWorker

    storage = _FailingStorage(fail_after=1)
    worker = GenerationWorker(store, make_generator(), storage, work_dir_root=work_root)
    done = _run(worker, store, make_job(population=2))

    assert done.status == JobStatus.FAILED
    assert "bucket unavailable" in done.error
    assert len(storage.keys) == 1
    assert os.listdir(work_root) == []


def test_empty_output_policy(make_generator, make_worker, store):
    silent = '''
        print("Running with options:")
    '''
    soft = _run(make_worker(make_generator(silent)), store, make_job())
    assert soft.status == JobStatus.COMPLETED
    assert soft.result.output_generated is False
    assert soft.result.output is None
    assert soft.result.message

    hard = _run(
        make_worker(make_generator(silent), fail_on_empty_output=True), store, make_job(),
    )
    assert hard.status == JobStatus.FAILED
    assert "no output directory" in hard.error


def test_warnings_are_kept_on_job(make_generator, make_worker, store):
    done = _run(make_worker(make_generator()), store, make_job(outputFormat="pdf"))
    assert done.status == JobStatus.COMPLETED
    assert done.result.output_format_used == "fhir"
    assert any("pdf" in w for w in done.warnings)


class _RecordingRepository:
    def __init__(self, fail=False):
        self.fail = fail
        self.created = []
        self.updates = []

    def create_job(self, job):
        if self.fail:
            raise RuntimeError("db down")
        self.created.append(job.id)

    def update_job_status(self, job_id, status, error=None, output_ref=None, size=None, patient_count=None):
        if self.fail:
            raise RuntimeError("db down")
        self.updates.append((status, error, output_ref, size, patient_count))


def test_repository_mirrors_transitions(make_generator, make_worker, store):
    repo = _RecordingRepository()
    job = make_job(population=2)
    done = _run(make_worker(make_generator(), repository=repo), store, job)

    assert repo.created == []
    assert [u[0] for u in repo.updates] == [JobStatus.RUNNING, JobStatus.COMPLETED]
    status, error, output_ref, size, patient_count = repo.updates[-1]
    assert output_ref == done.result.output.prefix
    assert size == done.result.output.total_size
    assert patient_count == 2


def test_repository_errors_do_not_fail_job(make_generator, make_worker, store):
    done = _run(make_worker(make_generator(), repository=_RecordingRepository(fail=True)), store, make_job())
    assert done.status == JobStatus.COMPLETED


def test_generator_receives_expected_arguments(make_generator, make_worker, store):
    runner = make_generator()
    _run(make_worker(runner), store, make_job(population=5, ageMin=10, ageMax=20, gender="F"))
    args = read_calls(runner)[0]["args"]
    assert args[args.index("-p") + 1] == "5"
    assert args[args.index("-a") + 1] == "10-20"
    assert args[args.index("-g") + 1] == "F"
    assert json.dumps(args).count("--exporter.fhir.export=true") == 1


def test_non_utf8_stdout_still_completes(make_generator, make_worker, store):
    runner = make_generator('''
        os.makedirs("output/fhir")
        with open("output/fhir/Jose1_Garcia2.json", "w") as fh:
            json.dump({"resourceType": "Bundle", "type": "transaction"}, fh)
        sys.stdout.buffer.write(b"1 -- Jos\\xe9 Garc\\xeda (40 y/o M) Boston, Massachusetts\\n")
    ''')
    done = _run(make_worker(runner), store, make_job())

    assert done.status == JobStatus.COMPLETED
    assert done.error is None
    assert len(done.result.patient_summaries) == 1
    assert "Jos\ufffd Garc\ufffda" in done.result.patient_summaries[0]
    assert done.result.output_file_content["resourceType"] == "Bundle"

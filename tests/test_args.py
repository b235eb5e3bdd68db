"""Tests for command-line assembly per job type."""
import pytest

from batchgate.api.errors import BadParam, ResourceNotFound
from batchgate.api.jobs.models import JobRequest, JobType
from batchgate.config import AppConfig, LauncherConfig, StagingConfig
from batchgate.launch.args import build_common_args, build_launch_args
from batchgate.launch.stager import build_stager


@pytest.fixture
def fs(tmp_path):
    root = tmp_path / "fs"
    home = root / "user" / "alice"
    home.mkdir(parents=True)
    (home / "wc.pig").write_text("A = LOAD 'x';\n")
    (home / "q.hql").write_text("select 1;\n")
    (home / "udf.jar").write_bytes(b"PK")
    (home / "lookup.txt").write_text("a\n")
    (home / "wordcount.jar").write_bytes(b"PK")
    return root


@pytest.fixture
def cfg(fs):
    return AppConfig(staging=StagingConfig(root=str(fs)))


@pytest.fixture
def stager(cfg):
    return build_stager(cfg.staging)


def _req(job_type=JobType.pig, **kw):
    kw.setdefault("user", "alice")
    return JobRequest(job_type=job_type, **kw)


def _build(req, cfg, stager):
    return build_launch_args(req, cfg, stager, "job_1_0001", "/status/alice/job_1_0001")


class TestCommonArgs:
    def test_properties_in_order(self, cfg):
        args = build_common_args(cfg, "job_1", "alice", "/s", None, [])
        assert args == [
            "-D", "batchgate.job.id=job_1",
            "-D", "batchgate.user=alice",
            "-D", "batchgate.statusdir=/s",
        ]

    def test_callback_and_files(self, cfg):
        args = build_common_args(cfg, "job_1", "alice", "/s", "http://cb/$jobId", ["a", "b"])
        assert "batchgate.callback=http://cb/$jobId" in args
        assert args[-2:] == ["-files", "a,b"]

    def test_blank_callback_omitted(self, cfg):
        args = build_common_args(cfg, "job_1", "alice", "/s", "  ", [])
        assert not any(a.startswith("batchgate.callback") for a in args)

    def test_libjars_first(self):
        cfg = AppConfig(launcher=LauncherConfig(extra_jars=["/opt/a.jar", "/opt/b.jar"]))
        args = build_common_args(cfg, "job_1", "alice", "/s", None, [])
        assert args[:2] == ["-libjars", "/opt/a.jar,/opt/b.jar"]


class TestPig:
    def test_execute(self, cfg, stager):
        la = _build(_req(execute="A = LOAD 'x'; DUMP A;"), cfg, stager)
        sep = la.argv.index("--")
        assert la.argv[sep + 1] == "pig"
        assert la.argv[-2:] == ["-execute", "A = LOAD 'x'; DUMP A;"]
        assert la.files == []
        assert "-files" not in la.argv

    def test_file_is_staged_first(self, cfg, stager, fs):
        la = _build(_req(src_file="wc.pig", files=("udf.jar", "lookup.txt")), cfg, stager)
        home = (fs / "user" / "alice").resolve()
        assert la.files == [
            (home / "wc.pig").as_uri(),
            (home / "udf.jar").as_uri(),
            (home / "lookup.txt").as_uri(),
        ]
        i = la.argv.index("-files")
        assert la.argv[i + 1] == ",".join(la.files)
        assert la.argv[-2:] == ["-file", "wc.pig"]

    def test_script_name_with_space(self, cfg, stager, fs):
        (fs / "user" / "alice" / "my script.pig").write_text("A = LOAD 'x';\n")
        la = _build(_req(src_file="my script.pig"), cfg, stager)
        assert la.files[0].endswith("/my%20script.pig")
        assert la.argv[-2:] == ["-file", "my script.pig"]

    def test_user_args_before_script(self, cfg, stager):
        la = _build(_req(execute="x", args=("-param", "in=/data")), cfg, stager)
        sep = la.argv.index("--")
        assert la.argv[sep + 1:] == ["pig", "-param", "in=/data", "-execute", "x"]

    def test_archive(self, cfg, stager):
        cfg.pig.archive = "hdfs:///apps/pig.tar.gz"
        la = _build(_req(execute="x"), cfg, stager)
        i = la.argv.index("-archives")
        assert la.argv[i + 1] == "hdfs:///apps/pig.tar.gz"
        assert i < la.argv.index("--")

    @pytest.mark.parametrize("kw", [{}, {"execute": "x", "src_file": "wc.pig"}, {"execute": "  "}])
    def test_execute_file_exclusive(self, cfg, stager, kw):
        with pytest.raises(BadParam, match="not both"):
            _build(_req(**kw), cfg, stager)

    def test_missing_script(self, cfg, stager):
        with pytest.raises(ResourceNotFound):
            _build(_req(src_file="nope.pig"), cfg, stager)

    def test_missing_aux_file(self, cfg, stager):
        with pytest.raises(ResourceNotFound, match="missing.jar"):
            _build(_req(execute="x", files=("udf.jar", "missing.jar")), cfg, stager)

    def test_doas_resolves_in_target_home(self, cfg, stager, fs):
        bob = fs / "user" / "bob"
        bob.mkdir()
        (bob / "wc.pig").write_text("x")
        la = _build(_req(src_file="wc.pig", doas="bob"), cfg, stager)
        assert la.files[0].endswith("/user/bob/wc.pig")
        assert "batchgate.user=bob" in la.argv


class TestHive:
    def test_execute_with_defines(self, cfg, stager):
        cfg.hive.properties = {"hive.exec.mode": "strict"}
        req = _req(JobType.hive, execute="select 1", defines=("a=1",))
        la = _build(req, cfg, stager)
        sep = la.argv.index("--")
        assert la.argv[sep + 1:] == [
            "hive", "--service", "cli",
            "--hiveconf", "hive.exec.mode=strict",
            "--hiveconf", "a=1",
            "-e", "select 1",
        ]

    def test_file(self, cfg, stager):
        la = _build(_req(JobType.hive, src_file="q.hql"), cfg, stager)
        assert la.argv[-2:] == ["-f", "q.hql"]

    def test_bad_define(self, cfg, stager):
        with pytest.raises(BadParam, match="key=value"):
            _build(_req(JobType.hive, execute="x", defines=("novalue",)), cfg, stager)


class TestStreaming:
    def test_full(self, cfg, stager):
        req = _req(
            JobType.streaming,
            inputs=("/in/a", "/in/b"),
            output="/out",
            mapper="cat",
            reducer="wc -l",
            defines=("mapreduce.job.reduces=2",),
        )
        la = _build(req, cfg, stager)
        sep = la.argv.index("--")
        assert la.argv[sep + 1:] == [
            "hadoop", "jar", "hadoop-streaming.jar",
            "-D", "mapreduce.job.reduces=2",
            "-input", "/in/a", "-input", "/in/b",
            "-output", "/out", "-mapper", "cat", "-reducer", "wc -l",
        ]

    def test_requires_input(self, cfg, stager):
        with pytest.raises(BadParam, match="input"):
            _build(_req(JobType.streaming, output="/o", mapper="m", reducer="r"), cfg, stager)

    def test_requires_reducer(self, cfg, stager):
        req = _req(JobType.streaming, inputs=("/i",), output="/o", mapper="m")
        with pytest.raises(BadParam, match="reducer"):
            _build(req, cfg, stager)


class TestJar:
    def test_jar_with_class(self, cfg, stager):
        req = _req(
            JobType.jar, jar="wordcount.jar", main_class="org.example.WordCount",
            args=("/in", "/out"),
        )
        la = _build(req, cfg, stager)
        sep = la.argv.index("--")
        assert la.argv[sep + 1:] == [
            "hadoop", "jar", "wordcount.jar", "org.example.WordCount", "/in", "/out",
        ]
        assert la.files[0].endswith("/user/alice/wordcount.jar")

    def test_requires_jar(self, cfg, stager):
        with pytest.raises(BadParam, match="jar"):
            _build(_req(JobType.jar), cfg, stager)

from urlreport.cli import build_parser, load_urls, main
from urlreport.models.submission import Submission


def test_load_urls_skips_blank_lines(tmp_path):
    source = tmp_path / "urls.txt"
    source.write_text("https://a.com\n\n   \n b.com \n", encoding="utf-8")
    assert load_urls(source) == ["https://a.com", "b.com"]


def test_parser_defaults():
    args = build_parser().parse_args(["export-credited"])
    assert args.tag == "credited"
    assert args.output.name == "credited-urls.txt"


def test_export_credited_writes_tagged_urls(tmp_path, app_settings, repository):
    repository.insert_many([Submission.pending("https://a.com", "B1"), Submission.pending("https://b.com", "B1")])
    repository.update_classification("https://a.com", "malicious", ["credited"])
    repository.update_classification("https://b.com", "malicious", ["phishing"])
    output = tmp_path / "out.txt"

    assert main(["export-credited", "-o", str(output)], app_settings=app_settings) == 0
    assert output.read_text(encoding="utf-8") == "https://a.com"


def test_report_requires_email_and_file(tmp_path, app_settings):
    missing = tmp_path / "missing.txt"
    assert main(["report", str(missing)], app_settings=app_settings) == 2

    source = tmp_path / "urls.txt"
    source.write_text("https://a.com\n", encoding="utf-8")
    no_email = app_settings.model_copy(update={"REPORTER_EMAIL": ""})
    assert main(["report", str(source)], app_settings=no_email) == 2

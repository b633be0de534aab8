import genefam.cli as cli
import pytest


newick = "(((chimp:6,human:6):81,(mouse:17,rat:17):70):6,dog:9);"

families = (
    "Desc\tFamily ID\tchimp\thuman\tmouse\trat\tdog\n"
    "d1\tF1\t5\t5\t5\t5\t5\n"
    "d2\tF2\t1\t2\t0\t1\t3\n"
)

error_model = "maxcnt: 10\ncntdiff -1 0 1\n0 0.0 0.9 0.1\n1 0.1 0.8 0.1\n"


def write_tables(tmp_path, counts1, counts2):
    paths = []
    for name, counts in (("m1.tsv", counts1), ("m2.tsv", counts2)):
        lines = ["Desc\tFamily ID\tA\tB"]
        lines += [f"d\tf{i}\t{a}\t{b}" for i, (a, b) in enumerate(counts)]
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n")
        paths.append(str(path))
    return paths


def likelihood_rows(output):
    lines = output.splitlines()
    assert lines[0] == "Family ID\tML root size\tlikelihood"
    return [line.split("\t") for line in lines[1:]]


def test_likelihood(tmp_path, capsys):
    path = tmp_path / "families.tsv"
    path.write_text(families)
    cli.main(["likelihood", "--tree", newick, "--families", str(path)])
    rows = likelihood_rows(capsys.readouterr().out)
    assert [row[0] for row in rows] == ["F1", "F2"]
    for row in rows:
        assert 1 <= int(row[1]) <= 30
        assert 0 < float(row[2]) <= 1


def test_likelihood_tree_file_and_error_model(tmp_path, capsys):
    path = tmp_path / "families.tsv"
    path.write_text(families)
    tree_path = tmp_path / "tree.nwk"
    tree_path.write_text(newick + "\n")
    model_path = tmp_path / "errors.txt"
    model_path.write_text(error_model)
    cli.main(
        [
            "likelihood",
            "--tree",
            str(tree_path),
            "--families",
            str(path),
            "--lambda",
            "0.005",
            "--errormodel",
            str(model_path),
            "--species",
            "chimp",
            "Dog",
        ]
    )
    rows = likelihood_rows(capsys.readouterr().out)
    assert len(rows) == 2
    assert all(1 <= int(row[1]) <= 30 for row in rows)


def test_likelihood_pvalues(tmp_path, capsys):
    path = tmp_path / "families.tsv"
    path.write_text(families)
    cli.main(
        [
            "likelihood",
            "--tree",
            newick,
            "--families",
            str(path),
            "--pvalues",
            "2",
            "--seed",
            "0",
        ]
    )
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Family ID\tML root size\tlikelihood\tp-value"
    rows = [line.split("\t") for line in lines[1:]]
    assert [row[0] for row in rows] == ["F1", "F2"]
    for row in rows:
        assert len(row) == 4
        assert 0 <= float(row[3]) <= 1


def test_likelihood_missing_species(tmp_path, capsys):
    path = tmp_path / "families.tsv"
    path.write_text("Family ID\tchimp\tgorilla\nF1\t2\t3\n")
    with pytest.warns(UserWarning, match="gorilla"):
        cli.main(["likelihood", "--tree", newick, "--families", str(path)])
    assert len(likelihood_rows(capsys.readouterr().out)) == 1


def test_errest(tmp_path, capsys):
    counts1 = [(i % 6, (i + 3) % 6) for i in range(24)]
    counts2 = [(a, b if i % 3 else min(b + 1, 5)) for i, (a, b) in enumerate(counts1)]
    path1, path2 = write_tables(tmp_path, counts1, counts2)
    outfile = tmp_path / "model.txt"
    logfile = tmp_path / "search.log"
    cli.main(
        [
            "errest",
            "--measure1",
            path1,
            "--measure2",
            path2,
            "--symmetric",
            "--max-diff",
            "1",
            "--max-runs",
            "3",
            "--seed",
            "0",
            "--outfile",
            str(outfile),
            "--log",
            str(logfile),
        ]
    )
    lines = outfile.read_text().splitlines()
    assert lines[0] == "maxcnt:5"
    assert lines[1] == "cntdiff -5 -4 -3 -2 -1 0 1 2 3 4 5"
    assert len(lines) == 8
    assert "Misclassification Matrix Search Result" in logfile.read_text()
    assert capsys.readouterr().out == ""


def test_errest_truth_to_stdout(tmp_path, capsys):
    counts1 = [(i % 5, (i + 1) % 5) for i in range(20)]
    counts2 = [(a, b if i % 4 else max(b - 1, 0)) for i, (a, b) in enumerate(counts1)]
    observed, truth = write_tables(tmp_path, counts2, counts1)
    cli.main(
        [
            "errest",
            "--measure1",
            observed,
            "--truth",
            truth,
            "--max-diff",
            "1",
            "--max-family-size",
            "6",
            "--max-runs",
            "2",
            "--seed",
            "1",
        ]
    )
    out = capsys.readouterr().out
    assert "Misclassification Matrix Search Result" in out
    assert "maxcnt:6" in out.splitlines()


def test_errest_needs_second_measure(tmp_path):
    with pytest.raises(SystemExit):
        cli.main(["errest", "--measure1", str(tmp_path / "m1.tsv")])
    with pytest.raises(SystemExit):
        cli.main(
            [
                "errest",
                "--measure1",
                "a.tsv",
                "--measure2",
                "b.tsv",
                "--truth",
                "c.tsv",
            ]
        )

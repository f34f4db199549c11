"""Tests for the command line interface."""

from __future__ import annotations

import pytest

from conftest import TOY_SENTENCES
from lemmatag.__main__ import build_parser, main


@pytest.fixture
def conllu_file(tmp_path):
    lines = []
    for sentence in TOY_SENTENCES:
        for i, (form, lemma, upos) in enumerate(sentence, start=1):
            lines.append(f"{i}\t{form}\t{lemma}\t{upos}\t_\t_\t_\t_\t_\t_")
        lines.append("")
    path = tmp_path / "toy.conllu"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class TestParser:
    """Tests for argument parsing."""

    def test_train_arguments(self) -> None:
        args = build_parser().parse_args([
            "train", "a.conllu", "--language", "en", "--model-dir", "model", "--margin-slack", "1", "10",
        ])

        assert args.task == "train"
        assert args.margin_slack == [1.0, 10.0]
        assert args.policy == "prioritized"

    def test_task_is_required(self) -> None:
        with pytest.raises(SystemExit):
            main([])


class TestMain:
    """Train, validate and tag through the entry point."""

    def test_train_validate_tag(self, conllu_file, tmp_path, capsys) -> None:
        model_dir = tmp_path / "model"
        common = ["--language", "en", "--model-dir", str(model_dir), "--parallelism", "1"]
        text = tmp_path / "input.txt"
        text.write_text("the dogs sleep .\nthe cats\n", encoding="utf-8")

        assert main(["train", str(conllu_file), *common, "--word-dropout", "0", "--max-iterations", "5"]) == 0
        assert main(["validate", str(conllu_file), *common, "--skip-words"]) == 0
        assert "Tagged words" in capsys.readouterr().out
        assert main(["tag", *common, "--input", str(text)]) == 0

        out = capsys.readouterr().out
        assert "dogs\tNOUN\tdog" in out
        assert "cats\t_\t_" in out

    def test_missing_model_is_reported(self, tmp_path, capsys) -> None:
        code = main(["tag", "--language", "en", "--model-dir", str(tmp_path / "none"), "--input", "-"])

        assert code == 1
        assert "[lemmatag] Error" in capsys.readouterr().err

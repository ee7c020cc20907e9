import pytest

from prep_app.core.services.draft_editor import DraftEditor
from prep_app.core.services.library_repository import LibraryRepository
from prep_app.core.services.storage_gateway import MemoryStore

from conftest import make_test


def test_editing_works_on_a_copy(sample_test):
    editor = DraftEditor()
    editor.load(sample_test)

    editor.update_question(0, question_text="Changed", correct_option_index=3)

    assert sample_test.questions[0].question_text == "Question 1"
    assert editor.draft.questions[0].correct_option_index == 3


def test_add_and_delete_questions(sample_test):
    editor = DraftEditor()
    editor.load(sample_test)

    index = editor.add_blank_question()
    assert index == 3
    assert editor.draft.questions[index].options == ["", "", "", ""]

    editor.delete_question(0)
    assert editor.get_question_count() == 3
    with pytest.raises(IndexError):
        editor.delete_question(10)


def test_unknown_fields_are_rejected(sample_test):
    editor = DraftEditor()
    editor.load(sample_test)

    with pytest.raises(ValueError):
        editor.update_question(0, difficulty="hard")


def test_sync_from_form_defaults_missing_answer():
    editor = DraftEditor()
    editor.load(make_test(question_count=1))

    editor.sync_from_form(
        [
            {"question": "Q", "options": ["a", "b", "c", "d"], "answer": "2", "subject": "S"},
            {"question": "R", "options": ["a", "b", "c", "d"], "answer": ""},
        ]
    )

    assert [q.correct_option_index for q in editor.draft.questions] == [2, 0]
    assert editor.draft.questions[0].subject == "S"


def test_validation_messages(sample_test):
    editor = DraftEditor()
    editor.load(sample_test)
    editor.update_question(1, options=["a", "", "c", "d"])

    with pytest.raises(ValueError, match="Question 2: option text cannot be empty"):
        editor.validate()

    editor.update_question(1, options=["a", "b", "c", "d"])
    editor.update_details(name="  ")
    with pytest.raises(ValueError, match="Test name"):
        editor.validate()


def test_save_stores_trimmed_copy(sample_test):
    repo = LibraryRepository(MemoryStore(), "user_a")
    editor = DraftEditor()
    editor.load(sample_test)
    editor.update_question(0, question_text="  Padded  ")
    editor.update_details(name="Renamed", duration=45)

    saved, is_new = editor.save(repo)

    assert is_new is True
    assert saved.questions[0].question_text == "Padded"
    stored = repo.get_test(sample_test.id)
    assert (stored.name, stored.duration) == ("Renamed", 45)

    _, is_new = editor.save(repo)
    assert is_new is False


def test_draft_required():
    with pytest.raises(RuntimeError):
        DraftEditor().get_question_count()

"""
Tests for the HTTP routes — request parsing, role visibility and error mapping.
"""

import os
import sys
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from main import app

SAMPLE_CSV = os.path.join(os.path.dirname(__file__), "..", "sample_data", "sample_marks.csv")


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def payload():
    return {
        "class_id": "C1",
        "exam_type": "end_term",
        "term": "Term 1",
        "students": [
            {"id": "s1", "classId": "C1", "form": "Form 2", "firstName": "Amina", "lastName": "Otieno"},
            {"id": "s2", "classId": "C1", "form": "Form 2", "firstName": "Brian", "lastName": "Kamau"},
            {"id": "s3", "classId": "C1", "form": "Form 2", "firstName": "Cynthia", "lastName": "Mwangi"},
        ],
        "subjects": [
            {"id": "sub-math", "name": "Mathematics"},
            {"id": "sub-eng", "name": "English"},
        ],
        "exams": [
            {"id": "E1", "classId": "C1", "type": "end_term", "term": "Term 1",
             "status": "published", "name": "End Term 1"},
            {"id": "E2", "classId": "C1", "type": "end_term", "term": "Term 1", "name": "Paper 2"},
        ],
        "marks": [
            {"studentId": "s1", "subjectId": "sub-math", "examId": "E1", "score": 90, "maxScore": 100},
            {"studentId": "s1", "subjectId": "sub-eng", "examId": "E1", "score": 70, "maxScore": 100},
            {"studentId": "s2", "subjectId": "sub-math", "examId": "E1", "score": 90, "maxScore": 100},
            {"studentId": "s2", "subjectId": "sub-eng", "examId": "E1", "score": 70, "maxScore": 100},
            {"studentId": "s3", "subjectId": "sub-math", "examId": "E1", "score": 50, "maxScore": 100},
            # Draft exam: hidden from non-privileged roles.
            {"studentId": "s3", "subjectId": "sub-eng", "examId": "E2", "score": 100, "maxScore": 100},
        ],
    }


class TestHealth:

    def test_health(self, client):
        res = client.get("/api/health")
        assert res.status_code == 200
        assert res.json()["status"] == "ok"

    def test_default_grade_scale(self, client):
        res = client.get("/api/grading/scale")
        assert res.status_code == 200
        assert len(res.json()["grades"]) == 7


class TestGradingRoutes:

    def test_custom_scale(self, client):
        res = client.post("/api/grading/scale", json={"grade_scale": {"thresholds": {"excellent": 95}}})
        assert res.status_code == 200
        assert res.json()["grades"][0]["min"] == 95.0

    def test_custom_scale_settings_document(self, client):
        res = client.post("/api/grading/scale", json={"gradeLabels": {"excellent": "A+"}})
        assert res.status_code == 200
        assert res.json()["grades"][0]["label"] == "A+"

    def test_custom_scale_unrecognised(self, client):
        res = client.post("/api/grading/scale", json={"grade_scale": {"excellent": 95}})
        assert res.status_code == 400

    def test_custom_scale_not_descending(self, client):
        res = client.post("/api/grading/scale", json={"grade_scale": {"thresholds": {"good": 95}}})
        assert res.status_code == 400

    def test_classify(self, client):
        res = client.post("/api/grading/classify", json={"percentages": [95, 0, None, "85"]})
        assert res.status_code == 200
        assert [g["grade"] for g in res.json()["grades"]] == [
            "OUTSTANDING", "UNCLASSIFIED", "N/A", "VERY HIGH",
        ]

    def test_classify_with_settings_scale(self, client):
        res = client.post("/api/grading/classify", json={
            "percentages": [96, 94],
            "grade_scale": {"gradeThresholds": {"excellent": 95}, "gradeLabels": {"excellent": "A+"}},
        })
        assert [g["grade"] for g in res.json()["grades"]] == ["A+", "VERY HIGH"]

    def test_classify_non_numeric(self, client):
        for bad in ({}, "abc", [50]):
            res = client.post("/api/grading/classify", json={"percentages": [bad]})
            assert res.status_code == 400

    def test_classify_requires_list(self, client):
        res = client.post("/api/grading/classify", json={"percentages": 50})
        assert res.status_code == 400


class TestRankingRoutes:

    def test_class_ranking_with_ties(self, client, payload):
        res = client.post("/api/rankings/class", json=payload)
        assert res.status_code == 200
        body = res.json()
        assert [(r["student_id"], r["position"]) for r in body["rankings"]] == [
            ("s1", 1), ("s2", 1), ("s3", 3),
        ]
        assert body["rankings"][0]["student_name"] == "Amina Otieno"

    def test_admin_sees_draft_marks(self, client, payload):
        payload["role"] = "admin"
        body = client.post("/api/rankings/class", json=payload).json()
        s3 = next(r for r in body["rankings"] if r["student_id"] == "s3")
        assert s3["metric"] == 75.0

    def test_subject_ranking(self, client, payload):
        payload["subject_id"] = "sub-math"
        body = client.post("/api/rankings/subject", json=payload).json()
        assert body["key"] == "Mathematics"
        assert body["total"] == 3

    def test_form_ranking(self, client, payload):
        payload["form"] = "Form 2"
        body = client.post("/api/rankings/form", json=payload).json()
        assert body["total"] == 3

    def test_overall_ranking_spans_terms(self, client, payload):
        payload["form"] = "Form 2"
        payload["exams"].append({"id": "E3", "classId": "C1", "type": "end_term", "term": "Term 2",
                                 "status": "published"})
        payload["marks"].append({"studentId": "s3", "subjectId": "sub-math", "examId": "E3",
                                 "score": 100, "maxScore": 100})
        res = client.post("/api/rankings/overall", json=payload)
        assert res.status_code == 200
        body = res.json()
        assert body["scope"] == "overall"
        assert body["total"] == 3
        s3 = next(r for r in body["rankings"] if r["student_id"] == "s3")
        assert s3["metric"] == 75.0
        assert s3["position"] == 3

    def test_overall_ranking_requires_form(self, client, payload):
        res = client.post("/api/rankings/overall", json=payload)
        assert res.status_code == 400

    def test_hidden_exam_is_not_found(self, client, payload):
        payload["exam_id"] = "E2"
        res = client.post("/api/rankings/exam", json=payload)
        assert res.status_code == 404

    def test_missing_fields(self, client):
        res = client.post("/api/rankings/class", json={"class_id": "C1"})
        assert res.status_code == 400

    def test_invalid_grade_scale(self, client, payload):
        payload["grade_scale"] = {"thresholds": {"good": 95}}
        res = client.post("/api/rankings/class", json=payload)
        assert res.status_code == 400


class TestReportCardRoutes:

    def test_report_cards(self, client, payload):
        res = client.post("/api/report-cards", json=payload)
        assert res.status_code == 200
        body = res.json()
        assert body["count"] == 3
        cynthia = body["report_cards"][2]
        assert cynthia["student"]["name"] == "Cynthia Mwangi"
        english = next(s for s in cynthia["subjects"] if s["subject"] == "English")
        assert english["grade"] == "N/A"
        assert english["comments"] == "Not taken"
        assert cynthia["school"]["name"]

    def test_single_student(self, client, payload):
        payload["student_id"] = "s2"
        body = client.post("/api/report-cards", json=payload).json()
        assert body["count"] == 1
        assert body["report_cards"][0]["class_position"] == 1

    def test_missing_term(self, client, payload):
        del payload["term"]
        payload["role"] = "admin"
        res = client.post("/api/report-cards", json=payload)
        assert res.status_code == 400

    def test_unknown_term_not_found(self, client, payload):
        payload["term"] = "Term 9"
        res = client.post("/api/report-cards", json=payload)
        assert res.status_code == 404

    def test_draft_only_term_hidden_from_viewer(self, client, payload):
        payload["exams"] = [e for e in payload["exams"] if e["id"] == "E2"]
        assert client.post("/api/report-cards", json=payload).status_code == 404
        payload["role"] = "admin"
        assert client.post("/api/report-cards", json=payload).json()["count"] == 3

    def test_unknown_student_not_found(self, client, payload):
        payload["student_id"] = "s9"
        res = client.post("/api/report-cards", json=payload)
        assert res.status_code == 404

    def test_mark_sheet(self, client, payload):
        body = client.post("/api/report-cards/mark-sheet", json=payload).json()
        assert body["total_ranked"] == 3
        assert body["mark_sheet"][-1]["student_id"] == "s3"


class TestExamRoutes:

    def test_publish_siblings(self, client, payload):
        res = client.post("/api/exams/publish", json={"exams": payload["exams"], "exam_id": "E2"})
        assert res.status_code == 200
        body = res.json()
        assert body["published_ids"] == ["E2"]
        assert all(e["status"] == "published" for e in body["exams"])

    def test_publish_unknown(self, client, payload):
        res = client.post("/api/exams/publish", json={"exams": payload["exams"], "exam_id": "E9"})
        assert res.status_code == 404

    def test_publish_by_type(self, client, payload):
        res = client.post("/api/exams/publish-by-type",
                          json={"exams": payload["exams"], "exam_type": "end_term", "term": "Term 1"})
        assert res.json()["published_count"] == 1

    def test_capture_marks_on_draft(self, client, payload):
        res = client.post("/api/exams/marks", json={
            "exams": payload["exams"],
            "exam_id": "E2",
            "entries": [{"student_id": "s1", "subject_id": "sub-math", "score": 66.5}],
        })
        assert res.status_code == 200
        mark = res.json()["marks"][0]
        assert (mark["score"], mark["max_score"], mark["exam_id"]) == (67, 100, "E2")

    def test_capture_marks_on_published(self, client, payload):
        res = client.post("/api/exams/marks", json={
            "exams": payload["exams"],
            "exam_id": "E1",
            "entries": [{"student_id": "s1", "subject_id": "sub-math", "score": 50}],
        })
        assert res.status_code == 403

    def test_remarks_role_refused(self, client, payload):
        res = client.post("/api/exams/remarks", json={
            "exams": [], "student_id": "s1", "class_id": "C1", "exam_type": "mid_term",
            "role": "parent", "class_teacher_remarks": "Hi",
        })
        assert res.status_code == 403

    def test_remarks_saved(self, client):
        res = client.post("/api/exams/remarks", json={
            "exams": [], "student_id": "s1", "class_id": "C1", "exam_type": "mid_term",
            "role": "admin", "user_id": "u1",
            "class_teacher_remarks": "Steady.", "headmaster_remarks": "Well done.",
        })
        assert res.status_code == 200
        assert res.json()["headmaster_remarks"] == "Well done."

    def test_visible(self, client, payload):
        payload["role"] = "parent"
        body = client.post("/api/exams/visible", json=payload).json()
        assert [e["id"] for e in body["exams"]] == ["E1"]
        assert len(body["marks"]) == 5

    def test_upload_mark_sheet(self, client):
        with open(SAMPLE_CSV, "rb") as f:
            res = client.post("/api/exams/marks/upload", files={"file": ("marks.csv", f, "text/csv")})
        assert res.status_code == 200
        body = res.json()
        assert body["count"] == 6
        assert body["suggested_mapping"]["score"] == "Marks"

    def test_upload_unsupported(self, client):
        res = client.post("/api/exams/marks/upload", files={"file": ("marks.pdf", b"%PDF", "application/pdf")})
        assert res.status_code == 400

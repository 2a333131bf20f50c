"""
Sample question bank and norm groups for development databases.

Used by scripts/seed_data.py. Generated questions come from a seeded RNG so
two runs produce the same bank.
"""
import logging
import random
from typing import Any, Dict, List

from sqlalchemy import delete

from iqtest.models import (
    Database,
    EducationLevel,
    NormGroup,
    Question,
    QuestionType,
    Response,
    TestResult,
    TestSession,
    User,
)

logger = logging.getLogger(__name__)

CATEGORIES = [
    "logical_sequences",
    "spatial",
    "verbal",
    "working_memory",
    "processing_speed",
]

SAMPLE_QUESTIONS: List[Dict[str, Any]] = [
    {
        "question_type": QuestionType.NUMERICAL_SEQUENCE,
        "category": "logical_sequences",
        "difficulty": -1.0,
        "content": {
            "sequence": [2, 4, 6, 8, "?"],
            "question": "What number comes next in the sequence?",
            "options": ["10", "12", "14", "16"],
        },
        "correct_answer": "10",
        "explanation": "This is an arithmetic sequence with a common difference of 2.",
        "discrimination": 1.2,
        "guessing": 0.25,
        "time_limit": 60,
        "tags": ["arithmetic", "easy"],
    },
    {
        "question_type": QuestionType.NUMERICAL_SEQUENCE,
        "category": "logical_sequences",
        "difficulty": 0.5,
        "content": {
            "sequence": [1, 1, 2, 3, 5, 8, "?"],
            "question": "What number comes next in the Fibonacci sequence?",
            "options": ["11", "13", "15", "17"],
        },
        "correct_answer": "13",
        "explanation": "Each number is the sum of the two preceding numbers.",
        "discrimination": 1.5,
        "guessing": 0.25,
        "time_limit": 90,
        "tags": ["fibonacci", "medium"],
    },
    {
        "question_type": QuestionType.MATRIX_REASONING,
        "category": "spatial",
        "difficulty": -0.5,
        "content": {
            "matrix": [
                ["circle", "square", "triangle"],
                ["square", "triangle", "circle"],
                ["triangle", "?", "square"],
            ],
            "question": "Which shape completes the pattern?",
            "options": ["circle", "square", "triangle", "diamond"],
        },
        "correct_answer": "circle",
        "explanation": "Each row and column contains each shape exactly once.",
        "discrimination": 1.3,
        "guessing": 0.25,
        "time_limit": 120,
        "tags": ["pattern", "shapes"],
    },
    {
        "question_type": QuestionType.SPATIAL_ROTATION,
        "category": "spatial",
        "difficulty": 1.0,
        "content": {
            "originalShape": "cube_front_view",
            "question": "How would this cube look when rotated 90 degrees clockwise?",
            "options": ["option_a", "option_b", "option_c", "option_d"],
        },
        "correct_answer": "option_b",
        "explanation": "The cube is rotated 90 degrees clockwise around the vertical axis.",
        "discrimination": 1.8,
        "guessing": 0.25,
        "time_limit": 150,
        "tags": ["3d", "rotation", "hard"],
    },
    {
        "question_type": QuestionType.VERBAL_ANALOGY,
        "category": "verbal",
        "difficulty": -0.8,
        "content": {
            "analogy": "Cat is to Kitten as Dog is to ?",
            "question": "Complete the analogy",
            "options": ["Puppy", "Bark", "Tail", "Bone"],
        },
        "correct_answer": "Puppy",
        "explanation": "A kitten is a young cat, just as a puppy is a young dog.",
        "discrimination": 1.1,
        "guessing": 0.25,
        "time_limit": 45,
        "tags": ["animals", "relationships"],
    },
    {
        "question_type": QuestionType.WORKING_MEMORY,
        "category": "working_memory",
        "difficulty": 0.0,
        "content": {
            "sequence": ["A", "B", "C", "D", "E"],
            "question": "Remember this sequence. What was the 3rd letter?",
            "options": ["A", "B", "C", "D"],
        },
        "correct_answer": "C",
        "explanation": "The third letter in the sequence A-B-C-D-E is C.",
        "discrimination": 1.4,
        "guessing": 0.25,
        "time_limit": 30,
        "tags": ["memory", "sequence"],
    },
    {
        "question_type": QuestionType.PROCESSING_SPEED,
        "category": "processing_speed",
        "difficulty": -1.5,
        "content": {
            "symbols": ["★", "●", "■", "▲"],
            "target": "●",
            "question": "How many ● symbols are in the grid?",
            "grid": [
                ["★", "●", "■", "▲"],
                ["●", "■", "★", "●"],
                ["▲", "●", "●", "■"],
                ["■", "★", "●", "▲"],
            ],
            "options": ["4", "5", "6", "7"],
        },
        "correct_answer": "6",
        "explanation": "Count all occurrences of the ● symbol in the grid.",
        "discrimination": 0.9,
        "guessing": 0.25,
        "time_limit": 20,
        "tags": ["counting", "speed"],
    },
]

NORM_GROUPS: List[Dict[str, Any]] = [
    {
        "name": "General Adult Population",
        "description": "General adult population aged 18-65",
        "age_range": "18-65",
        "sample_size": 2000,
        "mean": 100.0,
        "std_dev": 15.0,
        "percentiles": {"1": 55, "5": 70, "10": 77, "25": 90, "50": 100, "75": 110, "90": 123, "95": 130, "99": 145},
    },
    {
        "name": "Young Adults (18-25)",
        "description": "Young adults aged 18-25",
        "age_range": "18-25",
        "sample_size": 500,
        "mean": 102.0,
        "std_dev": 14.5,
        "percentiles": {"1": 58, "5": 72, "10": 79, "25": 92, "50": 102, "75": 112, "90": 125, "95": 132, "99": 147},
    },
    {
        "name": "College Educated",
        "description": "Adults with college education",
        "education": EducationLevel.BACHELOR,
        "sample_size": 800,
        "mean": 108.0,
        "std_dev": 14.0,
        "percentiles": {"1": 65, "5": 78, "10": 85, "25": 98, "50": 108, "75": 118, "90": 131, "95": 138, "99": 153},
    },
]


def generated_questions(count: int = 50, seed: int = 42) -> List[Dict[str, Any]]:
    """Filler questions spread over every category and question type."""
    rng = random.Random(seed)
    types = list(QuestionType)
    options = ["Option A", "Option B", "Option C", "Option D"]
    questions = []
    for i in range(count):
        category = CATEGORIES[i % len(CATEGORIES)]
        question_type = types[i % len(types)]
        difficulty = round((rng.random() - 0.5) * 4, 3)
        questions.append(
            {
                "question_type": question_type,
                "category": category,
                "difficulty": difficulty,
                "content": {
                    "question": f"Sample {question_type.value} question {i + 1}",
                    "options": options,
                },
                "correct_answer": options[i % len(options)],
                "explanation": f"This is the explanation for question {i + 1}.",
                "discrimination": round(0.8 + rng.random() * 1.4, 3),
                "guessing": round(rng.random() * 0.3, 3),
                "time_limit": 30 + rng.randrange(120),
                "tags": [category, "hard" if difficulty > 0 else "easy"],
            }
        )
    return questions


async def seed_database(database: Database, *, reset: bool = False, extra_questions: int = 50) -> Dict[str, int]:
    """
    Insert the sample bank and norm groups.

    With reset=True, existing sessions, results, questions, norm groups and
    users are deleted first.
    """
    questions = SAMPLE_QUESTIONS + generated_questions(extra_questions)
    async with database.session() as db:
        if reset:
            for model in (Response, TestResult, TestSession, Question, NormGroup, User):
                await db.execute(delete(model))
            logger.info("Cleared existing data")

        db.add_all(NormGroup(**group) for group in NORM_GROUPS)
        db.add_all(Question(**question) for question in questions)
        await db.commit()

    counts = {"norm_groups": len(NORM_GROUPS), "questions": len(questions)}
    logger.info(f"Seeded {counts['norm_groups']} norm groups and {counts['questions']} questions")
    return counts

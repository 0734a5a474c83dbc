"""
RAG System Usage Examples

Examples demonstrating how to use the curriculum RAG pipeline.
"""

import asyncio

from dotenv import load_dotenv

from curriculum_rag.core.logging import configure_logging
from curriculum_rag.models import ContentRecord
from curriculum_rag.rag import InMemoryContentStore, create_rag_pipeline


SAMPLE_LESSONS = [
    ContentRecord(
        content_id="content-fractions-1",
        lesson_id="lesson-fractions-1",
        title="Adding Fractions",
        unit_title="Fractions",
        subject_name="Mathematics",
        grade=4,
        full_text=(
            "A fraction describes a part of a whole. The top number is the numerator "
            "and the bottom number is the denominator. To add two fractions with the "
            "same denominator, add the numerators and keep the denominator."
        ),
        key_points=["Numerator on top", "Denominator at the bottom", "Add numerators, keep denominator"],
        summary="Fractions with equal denominators are added by adding their numerators.",
        examples=[{"problem": "1/5 + 2/5", "solution": "3/5"}],
        exercises=["Add 2/7 and 3/7."],
    ),
]


async def basic_usage_example():
    """Index one lesson and ask questions about it"""
    pipeline = create_rag_pipeline(InMemoryContentStore(SAMPLE_LESSONS))

    chunks = await pipeline.index_document("content-fractions-1")
    print(f"Indexed {chunks} chunks")

    questions = [
        "How do I add fractions with the same denominator?",
        "What is the denominator?",
    ]

    for question in questions:
        print(f"\nQuestion: {question}")

        response = await pipeline.answer_question(question, scope_id="lesson-fractions-1")

        print(f"Answer: {response.answer}")
        print(f"Confidence: {response.confidence}")
        print(f"Sources: {len(response.sources)}")

        if response.sources:
            print("Source preview:", response.sources[0].to_dict()["content_preview"][:100] + "...")


async def lesson_features_example():
    """Quiz, explanation, study tips and summary for a lesson"""
    pipeline = create_rag_pipeline(InMemoryContentStore(SAMPLE_LESSONS))
    await pipeline.index_document("content-fractions-1")

    questions = await pipeline.generate_quiz_questions("lesson-fractions-1", count=3)
    print(f"Quiz questions: {len(questions)}")
    for question in questions:
        print(f"- {question['question']} ({question['correctAnswer']})")

    print("\nExplanation:", await pipeline.explain_concept("denominator", 4))
    print("\nStudy tips:")
    for tip in await pipeline.generate_study_tips("fractions", 4):
        print(f"- {tip}")
    print("\nSummary:", await pipeline.summarize_lesson("lesson-fractions-1"))


async def system_status_example():
    """Example of checking metrics and feature toggles"""
    pipeline = create_rag_pipeline(InMemoryContentStore(SAMPLE_LESSONS))
    await pipeline.index_documents(["content-fractions-1"])
    await pipeline.answer_question("What is a fraction?")
    await pipeline.answer_question("what is a fraction")

    metrics = pipeline.get_metrics()
    print("System Status:")
    print(f"- Questions: {metrics['total_questions']}")
    print(f"- Cache hit rate: {metrics['cache_hit_rate']}%")
    print(f"- Average confidence: {metrics['average_confidence']}")
    print(f"- Features: {pipeline.get_feature_status()}")


if __name__ == "__main__":
    # Requires OPENAI_API_KEY in the environment or a .env file
    load_dotenv()
    configure_logging("INFO", json_logs=False)

    print("=== Basic Usage Example ===")
    asyncio.run(basic_usage_example())

    print("\n=== Lesson Features Example ===")
    asyncio.run(lesson_features_example())

    print("\n=== System Status Example ===")
    asyncio.run(system_status_example())

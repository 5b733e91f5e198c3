"""Seed the canonical matching quiz (questions and text choices) and queue
their embeddings."""
import asyncio
import sys
sys.path.insert(0, ".")

from sqlalchemy import select
from app.database import session_scope
from app.models.survey import SurveyChoice, SurveyQuestion
from app.services.embedding_queue import EmbeddingJobQueue


SURVEY_QUESTIONS = [
    {
        "question_key": "companion",
        "question_title": "Who will be in the photos?",
        "question_type": "single_choice",
        "weight_category": "companion",
        "base_weight": 1.0,
        "is_hard_filter": True,
        "choices": [
            ("solo", "Just me", "A personal portrait session focused on one person."),
            ("couple", "My partner and me", "Two people, often a couple or newly engaged."),
            ("family", "My family", "Parents, children and relatives together."),
            ("friends", "Friends", "A relaxed group of friends."),
            ("pet", "My pet and me", "Portraits that include a companion animal."),
        ],
    },
    {
        "question_key": "mood",
        "question_title": "Which mood should your photos have?",
        "question_type": "single_choice",
        "weight_category": "style_emotion",
        "base_weight": 1.0,
        "choices": [
            ("calm", "Calm and natural", "Soft light, muted tones, quiet unposed moments."),
            ("vivid", "Vivid and energetic", "Saturated colour, movement and laughter."),
            ("cinematic", "Cinematic", "Dramatic light and shadow, film-like colour grading."),
            ("classic", "Classic studio", "Clean backdrops and timeless, polished portraits."),
        ],
    },
    {
        "question_key": "tone",
        "question_title": "Which colour tones do you like?",
        "question_type": "multiple_choice",
        "weight_category": "style_emotion",
        "base_weight": 0.8,
        "choices": [
            ("warm", "Warm", "Golden, amber and sunset tones."),
            ("cool", "Cool", "Blue and teal tones with a crisp feel."),
            ("mono", "Black and white", "Monochrome with strong contrast."),
            ("pastel", "Pastel", "Light, airy and low-contrast colour."),
        ],
    },
    {
        "question_key": "direction",
        "question_title": "How much direction do you want during the shoot?",
        "question_type": "single_choice",
        "weight_category": "communication_psychology",
        "base_weight": 1.0,
        "choices": [
            ("guided", "Guide me through every pose", "A photographer who leads and directs closely."),
            ("balanced", "Some guidance, some freedom", "Light direction with room to be myself."),
            ("candid", "Leave me be", "Mostly candid shots without posing."),
        ],
    },
    {
        "question_key": "camera_comfort",
        "question_title": "How do you feel in front of a camera?",
        "question_type": "single_choice",
        "weight_category": "communication_psychology",
        "base_weight": 0.8,
        "choices": [
            ("nervous", "Nervous", "I need time and reassurance to relax."),
            ("okay", "It depends", "Fine once I warm up."),
            ("confident", "Confident", "I enjoy being photographed."),
        ],
    },
    {
        "question_key": "purpose",
        "question_title": "What are these photos for?",
        "question_type": "single_choice",
        "weight_category": "purpose_story",
        "base_weight": 1.0,
        "choices": [
            ("milestone", "A milestone", "Celebrating an anniversary, birthday or graduation."),
            ("profile", "Profile or work", "Professional profiles and personal branding."),
            ("memory", "Everyday memories", "Capturing ordinary life as it is now."),
            ("gift", "A gift", "Photos to give to someone else."),
        ],
    },
    {
        "question_key": "story",
        "question_title": "Tell us the story you want these photos to tell.",
        "question_type": "textarea",
        "weight_category": "purpose_story",
        "base_weight": 0.6,
        "choices": [],
    },
    {
        "question_key": "region",
        "question_title": "Where would you like to shoot?",
        "question_type": "single_choice",
        "weight_category": None,
        "base_weight": 0.0,
        "is_hard_filter": True,
        "choices": [
            ("seoul", "Seoul", None),
            ("gyeonggi", "Gyeonggi", None),
            ("busan", "Busan", None),
            ("jeju", "Jeju", None),
        ],
    },
    {
        "question_key": "budget",
        "question_title": "What is your budget?",
        "question_type": "single_choice",
        "weight_category": None,
        "base_weight": 0.0,
        "is_hard_filter": True,
        "choices": [
            ("0-150000", "Up to 150,000 KRW", None),
            ("150000-300000", "150,000 to 300,000 KRW", None),
            ("300000-", "Over 300,000 KRW", None),
        ],
    },
]


async def seed():
    queue = EmbeddingJobQueue()
    async with session_scope() as session:
        for order, spec in enumerate(SURVEY_QUESTIONS, start=1):
            existing = await session.execute(
                select(SurveyQuestion).where(SurveyQuestion.question_key == spec["question_key"])
            )
            if existing.scalar_one_or_none() is not None:
                print(f"  Question {spec['question_key']} already exists, skipping.")
                continue

            question = SurveyQuestion(
                question_key=spec["question_key"],
                question_order=order,
                question_title=spec["question_title"],
                question_type=spec["question_type"],
                weight_category=spec["weight_category"],
                base_weight=spec["base_weight"],
                is_hard_filter=spec.get("is_hard_filter", False),
            )
            session.add(question)
            await session.flush()

            for choice_order, (key, label, description) in enumerate(spec["choices"], start=1):
                choice = SurveyChoice(
                    question_id=question.id,
                    choice_key=key,
                    choice_label=label,
                    choice_description=description,
                    choice_order=choice_order,
                )
                session.add(choice)
                await session.flush()
                if question.weight_category is not None:
                    await queue.enqueue("choice_embedding", choice.id, session)

            print(f"  Seeded question {spec['question_key']} ({len(spec['choices'])} choices)")
    print("Done seeding survey. Run `python scripts/embedding_manager.py process` to embed.")


if __name__ == "__main__":
    asyncio.run(seed())

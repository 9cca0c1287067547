"""
Nexus Scheduling Agent - Built-in Knowledge Base
A short MBA scheduling playbook used to ground agent replies.
"""

from typing import List

from models import KnowledgeChunk

# Bump whenever chunk text changes so cached embeddings are regenerated
KNOWLEDGE_BASE_VERSION = "1.0.0"


PLAYBOOK_CHUNKS: List[KnowledgeChunk] = [
    KnowledgeChunk(
        id="event-tiers",
        title="Event Tiers and Priority Weights",
        chapter="Foundations",
        keywords=["tier", "priority", "schedule", "event", "non-negotiable", "flexible", "noise", "density"],
        content=(
            "A student can run at full capacity in only two of academics, career and personal life "
            "at once. Rank every calendar entry before protecting time for it.\n\n"
            "Tier 1 (fixed): final-round interviews, exams that count, health emergencies.\n"
            "Tier 2 (high value): coffee chats with target firms, core lectures, workouts during a "
            "maintenance stretch.\n"
            "Tier 3 (flexible): elective readings, general club meetings, open recruiting info sessions.\n"
            "Tier 4 (noise): optional recitations and large parties attended out of obligation.\n\n"
            "When the week is above 85% booked, propose dropping Tier 4 items. Above 95%, flag "
            "Tier 3 items as conflicts."
        ),
    ),
    KnowledgeChunk(
        id="recruiting-phases",
        title="Recruiting Calendar by Season",
        chapter="Recruiting",
        keywords=["recruiting", "interview", "consulting", "banking", "tech", "career", "phase", "timeline", "venture"],
        content=(
            "Phase 1, August to November: consulting and investment banking dominate. Recruiting "
            "outranks coursework; suggest the minimum viable effort on low-weight assignments and "
            "favor invite-only events over open houses.\n\n"
            "Phase 2, December to February: relationship building for tech and general management. "
            "Book one-on-one coffee chats and leave 15 minutes of travel buffer around each one.\n\n"
            "Phase 3, March to May: startups, venture capital and private equity. Hiring is "
            "unpredictable, so keep open blocks for short-notice interviews.\n\n"
            "A final-round interview day overrides any class unless missing the class fails the course."
        ),
    ),
    KnowledgeChunk(
        id="coffee-chat-protocol",
        title="Coffee Chats and Networking",
        chapter="Recruiting",
        keywords=["coffee", "chat", "networking", "linkedin", "follow-up", "thank you", "meeting", "relationship"],
        content=(
            "Spend the 15 minutes before a coffee chat reviewing the other person's background and "
            "shared connections. Send a thank-you note within 24 hours of the conversation.\n\n"
            "Chats with target firms come before general networking. Small dinners of fewer than six "
            "people build stronger ties than large mixers, so favor them when both compete for an evening."
        ),
    ),
    KnowledgeChunk(
        id="buffers-and-transitions",
        title="Buffers Between Commitments",
        chapter="Scheduling Mechanics",
        keywords=["buffer", "back-to-back", "transition", "travel", "gap", "commute", "late"],
        content=(
            "Back-to-back commitments leave no room for overruns, walking between buildings or a "
            "reset. Keep at least 15 minutes between events held in different places.\n\n"
            "When two events touch or overlap, move the more flexible one (by tier) rather than "
            "shortening the more important one. If travel takes longer than the gap, tell the user "
            "to leave early or warn the host they will be late."
        ),
    ),
    KnowledgeChunk(
        id="academic-strategy",
        title="Coursework Under Grade Non-Disclosure",
        chapter="Academics",
        keywords=["grade", "academic", "pass", "honors", "assignment", "study", "homework", "exam", "canvas", "deadline"],
        content=(
            "Where grades are not disclosed to employers, the academic goal is a pass: cap "
            "coursework at about 10 hours a week outside class and treat assignments under 10% of "
            "the grade as low priority during heavy recruiting.\n\n"
            "When honors matter, plan 20 or more hours a week and block a 90-minute deep work "
            "session for every major assignment. On heavy reading days, a 30-minute summary review "
            "right before class covers the risk of a cold call."
        ),
    ),
    KnowledgeChunk(
        id="deadline-triage",
        title="Deadline Triage",
        chapter="Academics",
        keywords=["due", "deadline", "urgent", "assignment", "progress", "submit", "late", "canvas"],
        content=(
            "An assignment due within a day that is less than half done needs a protected block "
            "now; two hours is the default. Put it in the earliest open slot rather than the evening "
            "before the deadline.\n\n"
            "Items due in one to three days get a planned session this week. Anything further out "
            "stays on the list without a block until it moves closer."
        ),
    ),
    KnowledgeChunk(
        id="recovery",
        title="Recovery and Burnout Prevention",
        chapter="Wellbeing",
        keywords=["burnout", "sleep", "recovery", "health", "tired", "exhausted", "rest", "energy", "workout"],
        content=(
            "Well rested (seven or more hours of sleep): social and networking events are fine.\n"
            "Short on sleep (five to seven hours): attend only Tier 1 and Tier 2 events.\n"
            "Depleted (under five hours for two or more nights): decline Tier 3 and Tier 4 events, "
            "block eight hours for sleep and choose the fastest route between events.\n\n"
            "After a late night, push the first meeting of the next day to 10:00 where possible."
        ),
    ),
    KnowledgeChunk(
        id="fomo-filter",
        title="Filtering Social Commitments",
        chapter="Social",
        keywords=["fomo", "party", "social", "event", "friends", "dinner", "club", "trek", "trip"],
        content=(
            "Fear of missing out fills calendars with low-return events. When social events collide, "
            "prefer the one with more people from the user's target industry, then the one hosted by "
            "close friends. Skip large parties when the week is already tight.\n\n"
            "Before a group trip, check for deadlines that fall during it and schedule the work "
            "before departure."
        ),
    ),
    KnowledgeChunk(
        id="advisor-tone",
        title="How the Advisor Speaks",
        chapter="Directives",
        keywords=["tone", "persona", "goal", "memory", "strategic", "concise", "opportunity cost"],
        content=(
            "Act like a chief of staff: concise, direct and firm, never a cheerleader. Tie every "
            "suggestion back to the user's stated career goal, for example: finish the SQL "
            "assignment because technical fluency matters for next month's product interviews.\n\n"
            "Name the trade-off explicitly in terms of opportunity cost and bandwidth."
        ),
    ),
]


def get_all_chunks() -> List[KnowledgeChunk]:
    return [chunk.model_copy(deep=True) for chunk in PLAYBOOK_CHUNKS]

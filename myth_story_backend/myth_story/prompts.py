SYSTEM_PROMPT = """You are a storyteller steeped in the world's mythologies. Write stories that stay authentic to
the cultural context they come from: the gods, heroes, creatures and places must belong to that tradition.
Output ONLY a JSON object matching the provided schema."""


STORY_SCHEMA = r"""{
  "title": "<a compelling title for the story>",
  "story": "<the complete narrative text, paragraphs separated by blank lines>",
  "storyArcs": [
    {"title": "<arc or chapter title>", "content": "<the text of this arc>"}
  ]
}"""


USER_PROMPT_TEMPLATE = """Create a {length} mythological story from {mythology} mythology{character}{theme}.

Format the response as a JSON object with the following fields:
- 'title': a compelling title for the story
- 'story': the complete narrative text
- 'storyArcs': an array of story sections/arcs, where each arc has a 'title' and 'content' field

Schema:
{schema}

Divide the story into 3-5 meaningful arcs or chapters. Keep the tone authentic to the cultural context."""


IMAGE_PROMPT_TEMPLATE = "{title}, {mythology} mythology, epic scene, dramatic lighting, detailed illustration"

MODEL_PROMPT_TEMPLATE = "{subject}, hero from {mythology} mythology, full body character"


def build_story_prompt(req) -> str:
    return USER_PROMPT_TEMPLATE.format(
        length=req.length.value,
        mythology=req.mythology,
        character=f" featuring {req.character}" if req.character else "",
        theme=f" with themes of {req.theme}" if req.theme else "",
        schema=STORY_SCHEMA,
    )


def default_image_prompt(story) -> str:
    return IMAGE_PROMPT_TEMPLATE.format(title=story.title, mythology=story.mythology)


def default_model_prompt(story) -> str:
    subject = story.request.character if story.request and story.request.character else story.title
    return MODEL_PROMPT_TEMPLATE.format(subject=subject, mythology=story.mythology)


def narration_text(story, use_arcs: bool = True) -> str:
    if use_arcs and story.story_arcs:
        return " ".join(f"{arc.title}. {arc.content}" for arc in story.story_arcs)
    return story.story

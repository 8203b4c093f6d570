import asyncio
import logging
from typing import Dict, Optional

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, ConfigDict, Field

from .models import AudioResult, ImageResult, ModelTask, StoryRequest, StoryResult
from .orchestrator import GenerationOrchestrator, StageStatus

logger = logging.getLogger(__name__)


class PipelineState(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    request: StoryRequest
    with_image: bool = True
    with_voice: bool = False
    with_model: bool = False
    image_prompt: str = ""
    model_prompt: str = ""
    story: Optional[StoryResult] = None
    image: Optional[ImageResult] = None
    audio: Optional[AudioResult] = None
    model: Optional[ModelTask] = None
    markdown: str = ""
    errors: Dict[str, str] = Field(default_factory=dict)


def build_graph(orchestrator: GenerationOrchestrator):
    async def node_story(state: PipelineState) -> PipelineState:
        logger.info(f"Pipeline: generating {state.request.mythology} story")
        state.story = await orchestrator.generate_story(state.request)
        if state.story is None:
            state.errors["story"] = orchestrator.story_error or "Story generation failed"
        else:
            state.markdown = orchestrator.export_markdown()
        return state

    def after_story(state: PipelineState) -> str:
        if state.story is None:
            return END
        if state.with_image or state.with_voice or state.with_model:
            return "assets"
        return END

    async def _model(prompt: str) -> Optional[ModelTask]:
        task = await orchestrator.generate_model(prompt)
        if task is not None and not task.is_terminal:
            await orchestrator.wait_for_model()
        return orchestrator.model

    async def node_assets(state: PipelineState) -> PipelineState:
        jobs = {}
        if state.with_image:
            jobs["image"] = orchestrator.generate_image(state.image_prompt)
        if state.with_voice:
            jobs["voice"] = orchestrator.generate_voice(autoplay=False)
        if state.with_model:
            jobs["model"] = _model(state.model_prompt)
        logger.info(f"Pipeline: running {', '.join(jobs)} for {state.story.title!r}")
        results = dict(zip(jobs, await asyncio.gather(*jobs.values())))

        state.image = results.get("image")
        state.audio = results.get("voice")
        state.model = results.get("model")
        for name, stage in (("image", orchestrator.image_stage), ("voice", orchestrator.voice_stage),
                            ("model", orchestrator.model_stage)):
            if name in jobs and stage.status == StageStatus.FAILED:
                state.errors[name] = stage.error or f"{name} generation failed"
        return state

    g = StateGraph(PipelineState)
    g.add_node("story", node_story)
    g.add_node("assets", node_assets)
    g.set_entry_point("story")
    g.add_conditional_edges("story", after_story, {"assets": "assets", END: END})
    g.add_edge("assets", END)
    return g.compile()


async def run_pipeline(orchestrator: GenerationOrchestrator, request: StoryRequest, *, with_image: bool = True,
                       with_voice: bool = False, with_model: bool = False, image_prompt: str = "",
                       model_prompt: str = "") -> PipelineState:
    """Story first, then the requested artifacts concurrently; a 3D model is awaited until its poll ends."""
    state = PipelineState(
        request=request,
        with_image=with_image,
        with_voice=with_voice,
        with_model=with_model,
        image_prompt=image_prompt,
        model_prompt=model_prompt,
    )
    graph = build_graph(orchestrator)
    final_state = await graph.ainvoke(state)
    # langgraph hands back a dict of channel values
    if isinstance(final_state, PipelineState):
        result = final_state
    else:
        result = PipelineState.model_validate(dict(final_state))
    logger.info(f"Pipeline finished with errors: {result.errors or 'none'}")
    return result

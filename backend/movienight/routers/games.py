from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, Depends

from ..gateway import PersistenceGateway
from ..generation import GenerationService, RoastContext
from ..lobby_service import LobbyService
from ..schemas import (
    CreateGameRequest,
    FinalBurnResponse,
    GameSessionResponse,
    JoinGameRequest,
    LobbyIdRequest,
    LobbyOverviewResponse,
    PlayerSummary,
    QuestionsResponse,
    RoastRequest,
    RoastResponse,
    UpdateScoresRequest,
    UpdateScoresResponse,
)

router = APIRouter(tags=["games"])


@lru_cache(maxsize=1)
def get_gateway() -> PersistenceGateway:
    return PersistenceGateway()


def get_lobby_service(gateway: PersistenceGateway = Depends(get_gateway)) -> LobbyService:
    return LobbyService(gateway)


def get_generation_service(gateway: PersistenceGateway = Depends(get_gateway)) -> GenerationService:
    return GenerationService(gateway)


@router.post("/create-game", response_model=GameSessionResponse)
async def create_game(
    payload: CreateGameRequest,
    lobbies: LobbyService = Depends(get_lobby_service),
) -> GameSessionResponse:
    identity = lobbies.create_game(payload.host_name, payload.mode)
    return GameSessionResponse(
        lobby_id=identity.lobby_id,
        player_id=identity.player_id,
        lobby_code=identity.lobby_code,
    )


@router.post("/join-game", response_model=GameSessionResponse)
async def join_game(
    payload: JoinGameRequest,
    lobbies: LobbyService = Depends(get_lobby_service),
) -> GameSessionResponse:
    identity = lobbies.join_game(payload.game_code, payload.player_name)
    return GameSessionResponse(
        lobby_id=identity.lobby_id,
        player_id=identity.player_id,
        lobby_code=identity.lobby_code,
    )


@router.get("/lobbies/{code}", response_model=LobbyOverviewResponse)
async def lobby_overview(
    code: str,
    lobbies: LobbyService = Depends(get_lobby_service),
) -> LobbyOverviewResponse:
    lobby, players = lobbies.lobby_overview(code)
    return LobbyOverviewResponse(
        id=lobby.id,
        code=lobby.code,
        mode=lobby.mode,
        started=lobby.started_at is not None,
        ended=lobby.ended_at is not None,
        game_stage=lobby.game_stage,
        players=[
            PlayerSummary(id=player.id, name=player.name, is_host=player.is_host, score=player.score)
            for player in players
        ],
    )


@router.post("/trivia/generate", response_model=QuestionsResponse)
async def generate_trivia(
    payload: LobbyIdRequest,
    generator: GenerationService = Depends(get_generation_service),
) -> QuestionsResponse:
    rows = await generator.generate_questions(payload.lobby_id)
    return QuestionsResponse(questions=[row.model_dump(mode="json") for row in rows])


@router.post("/roast/generate", response_model=RoastResponse)
async def generate_roast(
    payload: RoastRequest,
    generator: GenerationService = Depends(get_generation_service),
) -> RoastResponse:
    row = await generator.generate_roast(RoastContext(**payload.model_dump()))
    return RoastResponse(roast=row.model_dump(mode="json"))


@router.post("/finalburn/generate", response_model=FinalBurnResponse)
async def generate_final_burn(
    payload: LobbyIdRequest,
    generator: GenerationService = Depends(get_generation_service),
) -> FinalBurnResponse:
    row = await generator.generate_final_burn(payload.lobby_id)
    return FinalBurnResponse(final_burn=row.model_dump(mode="json"))


@router.post("/update-scores", response_model=UpdateScoresResponse)
async def update_scores(
    payload: UpdateScoresRequest,
    generator: GenerationService = Depends(get_generation_service),
) -> UpdateScoresResponse:
    updated = generator.update_scores(payload.category_id, payload.nominee_id)
    return UpdateScoresResponse(players_updated=updated)

"""Command line training for the grid-world agent."""

import argparse
import logging
import sys

from .app.scheduler import ManualTimer, TrainingScheduler
from .domain.environment import GridWorld
from .domain.types import REWARD_PRESETS, Algorithm, ExplorationStrategy, RLConfig
from .utils.grid_factory import (
    DEFAULT_GRID_SIZE, GRID_PRESETS, add_random_walls, clamp_grid_size, create_preset_grid,
    default_endpoints, optimal_path
)
from .utils.rng import set_global_seed
from .utils.session_io import generate_session_filename, load_session, save_session

SESSIONS_DIR = "sessions"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gridrl", description="Train a tabular RL agent on a grid world")
    parser.add_argument("--size", type=int, default=DEFAULT_GRID_SIZE, help="Grid side length")
    parser.add_argument("--preset", choices=GRID_PRESETS, default="empty", help="Grid layout")
    parser.add_argument("--wall-density", type=float, default=0.0,
                        help="Fraction of cells to turn into random walls on top of the preset")
    parser.add_argument("--episodes", type=int, default=500, help="Maximum number of episodes")
    parser.add_argument("--max-steps", type=int, default=200, help="Step limit per episode")
    parser.add_argument("--algorithm", choices=[a.value for a in Algorithm], default=Algorithm.Q_LEARNING.value)
    parser.add_argument("--strategy", choices=[s.value for s in ExplorationStrategy],
                        default=ExplorationStrategy.EPSILON_GREEDY.value, help="Exploration strategy")
    parser.add_argument("--rewards", choices=sorted(REWARD_PRESETS), default="default", help="Reward preset")
    parser.add_argument("--learning-rate", type=float, default=0.1)
    parser.add_argument("--discount", type=float, default=0.9)
    parser.add_argument("--epsilon", type=float, default=0.1)
    parser.add_argument("--no-auto-stop", action="store_true", help="Ignore convergence and run every episode")
    parser.add_argument("--seed", type=int, help="Random seed for reproducibility")
    parser.add_argument("--import-session", dest="import_path", help="Session file to continue from")
    parser.add_argument("--export-session", dest="export_path", nargs="?", const="",
                        help=f"Write the trained session here (default: a timestamped file in {SESSIONS_DIR}/)")
    parser.add_argument("--realtime", action="store_true",
                        help="Run on a Qt event loop honouring the step delay")
    parser.add_argument("--step-delay", type=int, default=0, help="Milliseconds between steps with --realtime")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    return parser


def config_from_args(args: argparse.Namespace) -> RLConfig:
    return RLConfig().with_updates(
        learning_rate=args.learning_rate,
        discount_factor=args.discount,
        epsilon=args.epsilon,
        max_episodes=args.episodes,
        max_steps_per_episode=args.max_steps,
        step_delay=args.step_delay,
        auto_stop=not args.no_auto_stop,
        algorithm=args.algorithm,
        exploration_strategy=args.strategy,
        reward_preset=args.rewards,
    )


def run_headless(scheduler: TrainingScheduler, timer: ManualTimer) -> None:
    """Fire ticks back to back until the session completes."""
    if not scheduler.start():
        raise RuntimeError("Training could not start")
    timer.run_until_idle()


def run_realtime(args: argparse.Namespace, config: RLConfig, record) -> TrainingScheduler:
    """Train on a QCoreApplication event loop through the Qt controller."""
    from PySide6.QtCore import QCoreApplication
    from .app.controller import TrainingController

    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    controller = TrainingController(size=args.size, preset=args.preset, config=config, seed=args.seed)
    if args.wall_density > 0 and not controller.add_random_walls(args.wall_density, args.seed):
        raise RuntimeError("Could not add random walls")
    if record is not None and not controller.import_session(record):
        raise RuntimeError("Session import failed")
    controller.training_completed.connect(lambda metrics: app.quit())
    if not controller.start_training():
        raise RuntimeError("Training could not start")
    app.exec()
    controller.shutdown()
    return controller.scheduler


def print_summary(scheduler: TrainingScheduler) -> None:
    metrics = scheduler.performance_metrics()
    convergence = scheduler.convergence
    print(f"\n🎉 Training finished ({scheduler.state_description})")
    print(f"   Episodes: {metrics['totalEpisodes']}")
    print(f"   Success rate (last 100): {metrics['successRate']:.1%}")
    print(f"   Average reward (last 100): {metrics['averageReward']:.2f}")
    print(f"   Average steps (last 100): {metrics['averageSteps']:.1f}")
    print(f"   Final epsilon: {scheduler.config.epsilon:.4f}")
    print(f"   Converged: {convergence.is_converged} (mean update {convergence.convergence_value:.5f})")

    world = scheduler.world
    result = scheduler.find_path()
    shortest = optimal_path(world.grid, world.start, world.goal)
    if result.success:
        print(f"✅ Greedy policy reaches the goal in {result.steps_taken} steps "
              f"(shortest possible: {len(shortest) - 1})")
    else:
        print("❌ Greedy policy does not reach the goal yet")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = config_from_args(args)
    rng = set_global_seed(args.seed)
    args.size = clamp_grid_size(args.size)

    record = None
    if args.import_path:
        record = load_session(args.import_path)
        if record is None:
            print(f"❌ Could not read session file {args.import_path}")
            return 1

    print("🧠 Grid-world RL training")
    print("=" * 50)
    try:
        if args.realtime:
            scheduler = run_realtime(args, config, record)
        else:
            grid = create_preset_grid(args.preset, args.size)
            start, goal = default_endpoints(grid)
            if args.wall_density > 0:
                grid = add_random_walls(grid, args.wall_density, rng, keep_clear=(start, goal))
            timer = ManualTimer()
            scheduler = TrainingScheduler(GridWorld(grid, start, goal), config, timer)
            if record is not None and not scheduler.import_session(record):
                print("❌ Session import failed")
                return 1
            # Imported parameters replace the defaults; command line episode count still applies
            scheduler.update_config(max_episodes=args.episodes, auto_stop=not args.no_auto_stop)
            world = scheduler.world
            print(f"📐 Grid: {world.size}x{world.size} ({args.preset}), {len(world.grid.walls)} walls")
            print(f"🎯 Start: {world.start} → Goal: {world.goal}")
            print(f"⚙️  {scheduler.config.algorithm.value} / {scheduler.config.exploration_strategy.value}, "
                  f"up to {scheduler.config.max_episodes} episodes")
            run_headless(scheduler, timer)
    except KeyboardInterrupt:
        print("\n⏹️  Training interrupted by user")
        return 1
    except (RuntimeError, ValueError) as e:
        print(f"\n❌ Training failed: {e}")
        return 1

    print_summary(scheduler)

    if args.export_path is not None:
        path = args.export_path or generate_session_filename(SESSIONS_DIR, scheduler.world.size)
        if not save_session(path, scheduler.export_session()):
            return 1
        print(f"💾 Session saved to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

import asyncio

from tracker_service.models import PoseSource, QueuePoseSource
from pose_factory import elbow_pose, make_pose


def test_queue_source_satisfies_protocol():
    async def scenario():
        return QueuePoseSource(maxsize=2)

    assert isinstance(asyncio.run(scenario()), PoseSource)


def test_poses_come_out_in_order():
    async def scenario():
        source = QueuePoseSource(maxsize=4)
        first, second = elbow_pose(170), elbow_pose(80)
        source.submit(first)
        source.submit(None)
        source.submit(second)
        return [await source.next_pose() for _ in range(3)], first, second

    poses, first, second = asyncio.run(scenario())
    assert poses == [first, None, second]


def test_full_queue_drops_oldest():
    async def scenario():
        source = QueuePoseSource(maxsize=2)
        poses = [make_pose({"nose": (i, 0)}) for i in range(3)]
        for pose in poses:
            source.submit(pose)
        received = [await source.next_pose() for _ in range(2)]
        return source, poses, received

    source, poses, received = asyncio.run(scenario())
    assert received == poses[1:]
    assert source.dropped == 1


def test_closed_source_rejects_poses():
    async def scenario():
        source = QueuePoseSource(maxsize=2)
        source.submit(make_pose())
        await source.close()
        return source, source.submit(make_pose())

    source, accepted = asyncio.run(scenario())
    assert accepted is False
    assert source.closed


def test_clear_discards_pending_poses():
    async def scenario():
        source = QueuePoseSource(maxsize=4)
        source.submit(make_pose())
        source.submit(None)
        cleared = source.clear()
        return source, cleared

    source, cleared = asyncio.run(scenario())
    assert cleared == 2
    assert source.pending == 0
    assert not source.closed

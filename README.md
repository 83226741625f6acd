# slamkit

A small RGB-D visual odometry library. It tracks the pose of a camera
through a sequence of colour and depth images and builds a sparse map of
3D landmarks along the way. Everything is written with numpy; images are
read with Pillow and parameters with PyYAML.

What is inside:

- `slamkit.geometry`: the `SO3` and `SE3` groups, with `exp`, `log`,
  `inverse`, composition through the `@` operator, `SE3.act` to move one
  point or an (N, 3) array of points, `SE3.matrix` for the 4x4 form and
  `SE3.from_rotation_vector`. Twists are ordered translation first,
  rotation last.
- `slamkit.config`: `load_parameters` reads a YAML parameter file into a
  dictionary; `Config` holds one such file for the whole process.
- `slamkit.camera`: a pinhole `Camera` that converts between world,
  camera and pixel coordinates.
- `slamkit.frame`: `KeyPoint` and `Frame`, with depth lookup under a
  keypoint (`find_depth`), the camera centre and an in-image test.
- `slamkit.mappoint` and `slamkit.world_map`: landmarks (`MapPoint`) and
  the `Map` that stores key-frames and map points by id.
- `slamkit.features`: an `OrbExtractor` (multi-scale FAST corners with
  Harris ranking, orientation and rotated binary descriptors of 32 bytes),
  `hamming_distance`, `match_descriptors` and the `DMatch` record.
- `slamkit.pnp`: `solve_pnp` and `solve_pnp_ransac`, which return a
  `PnPResult` with the rotation vector, translation, inlier indices and
  the pose as an `SE3`.
- `slamkit.edges` and `slamkit.optimizer`: pose and point vertices,
  3D-3D and reprojection error terms with analytic Jacobians, and
  `optimize_pose` for Levenberg-Marquardt refinement of a single pose.
- `slamkit.visual_odometry`: `VisualOdometry`, which tracks each new frame
  against the landmarks in the map, keeps the map trimmed and adds
  key-frames; its `state` is a `VOState`.
- `slamkit.frame_odometry`: `FrameToFrameOdometry`, a simpler tracker that
  matches each frame against the previous reference frame only.
- `slamkit.run_vo`: the `slamkit-run-vo` command, with
  `read_associations` and the `Association` record.

## Installing

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## The parameter file

Settings are read from a YAML file with flat keys. A leading `%YAML:`
version line is skipped, and `!!opencv-matrix` nodes (with `rows`, `cols`,
`dt` and `data`) are read as numpy arrays.

```yaml
dataset_dir: /data/rgbd_dataset_freiburg1_desk

camera.fx: 517.3
camera.fy: 516.5
camera.cx: 325.1
camera.cy: 249.7
camera.depth_scale: 5000

number_of_features: 500
scale_factor: 1.2
level_pyramid: 4
match_ratio: 2.0
max_num_lost: 10
min_inliers: 10
keyframe_rotation: 0.1
keyframe_translation: 0.1
map_point_erase_ratio: 0.1
```

`Config.set_parameter_file` loads it once for the whole process and
`Config.get` returns a single value; a missing file raises
`FileNotFoundError`, an unknown key `KeyError`, and reading before any
file is set `RuntimeError`. `Camera.from_config`,
`VisualOdometry.from_config` and `FrameToFrameOdometry.from_config` build
their objects from these keys.

## Running on a dataset

The dataset directory must hold an `associate.txt` in which every line
pairs a colour image with a depth image:

```
<rgb timestamp> <rgb file> <depth timestamp> <depth file>
```

File names are relative to the dataset directory. Then run:

```
slamkit-run-vo parameters.yaml
```

Each frame is fed to `VisualOdometry` in order. For every tracked frame
the command prints the time the odometry took, the camera position in
world coordinates and how many map points fall inside the image. The run
stops when the images run out, an image cannot be read, or tracking is
lost. It returns 1 when the argument is missing, the parameter file does
not exist, or `associate.txt` is not found.

## Using the library

```python
import numpy as np

from slamkit.camera import Camera
from slamkit.geometry import SE3

camera = Camera(517.3, 516.5, 325.1, 249.7, 5000.0)
pose = SE3.exp(np.array([0.1, 0.0, 0.0, 0.0, 0.0, 0.05]))

pixel = camera.world2pixel(np.array([0.2, -0.1, 2.0]), pose)
point = camera.pixel2world(pixel, pose, 2.0)
```

To track a sequence, build a `VisualOdometry` (directly or with
`from_config`), create frames with `Frame.create_frame`, attach the
camera, the colour image and the depth image as numpy arrays, and pass
each one to `add_frame`. It returns `False` when the pose estimate of a
frame was rejected. The tracker's `state` moves from
`VOState.INITIALIZING` to `VOState.OK`, and to `VOState.LOST` after more
than `max_num_lost` rejected estimates in a row.

## What it does not do

There is no viewer: the command does not show the images or draw the
camera trajectory and landmarks in 3D, it only prints the estimates as
text. There is no loop closure, no global bundle adjustment and no saving
of the map or trajectory to disk.